"""FastAPI routes for the Marketplace: payments, escrow, orders and delivery.

Every mutating route goes through the orchestrator so it holds the same
per-aggregate locks as webhooks and the background sweeps. Those routes are
plain functions: FastAPI runs them in its threadpool, so a slow gateway call
or a lock wait never blocks the event loop.
"""

import json

import structlog
from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from protean.utils.globals import current_domain

from marketplace.api.schemas import (
    AssignRiderRequest,
    CalculateFeesRequest,
    CancelOrderRequest,
    CancelOrderResponse,
    ChargeResponse,
    DisputeEscrowRequest,
    FeeBreakdownSchema,
    FlagPaymentRequest,
    HistoryEntrySchema,
    InitiatePaymentRequest,
    OrderIdResponse,
    OrderResponse,
    PaymentDetailResponse,
    PaymentStatusResponse,
    PlaceOrderRequest,
    ReceiptResponse,
    ReceiptSentResponse,
    RefundRequest,
    ReleaseEscrowRequest,
    ResolveDisputeRequest,
    SendReceiptRequest,
    SplitSchema,
    StatusResponse,
    TrackingEntrySchema,
    TrackingResponse,
    UpdateDeliveryStatusRequest,
    UpdateOrderStatusRequest,
    VerificationResponse,
    WebhookResponse,
)
from marketplace.order.order import Order
from marketplace.payment import orchestrator
from marketplace.payment.fees import calculate_fees
from marketplace.payment.methods import METHOD_CATALOG
from marketplace.payment.payment import Payment, PaymentStatus

logger = structlog.get_logger(__name__)

_RECEIPT_STATUSES = {
    PaymentStatus.SUCCESSFUL.value,
    PaymentStatus.HELD_IN_ESCROW.value,
    PaymentStatus.RELEASED.value,
    PaymentStatus.PARTIALLY_REFUNDED.value,
}


def _get_payment(payment_id: str) -> Payment:
    return current_domain.repository_for(Payment).get(payment_id)


def _get_order(order_id: str) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def _amount(payment: Payment) -> FeeBreakdownSchema:
    return FeeBreakdownSchema(
        subtotal=payment.amount.subtotal,
        delivery_fee=payment.amount.delivery_fee,
        service_fee=payment.amount.service_fee,
        tax=payment.amount.tax,
        total=payment.amount.total,
    )


def _status_response(payment: Payment) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        payment_id=str(payment.id),
        order_id=str(payment.order_id),
        status=payment.status,
        message=payment.buyer_message(),
        method=payment.method,
        total=payment.amount.total,
        currency=payment.currency,
        escrow_status=payment.escrow_status.value,
        receipt_number=payment.receipt.number,
    )


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.get("/methods")
async def list_payment_methods() -> dict:
    """Payment methods offered at checkout, grouped by category."""
    return {"categories": METHOD_CATALOG}


@payment_router.post("/calculate", response_model=FeeBreakdownSchema)
async def calculate_payment_fees(body: CalculateFeesRequest) -> FeeBreakdownSchema:
    """Preview the fee breakdown a payment would be created with."""
    breakdown = calculate_fees(body.subtotal, body.delivery_fee, order_tax=body.tax)
    return FeeBreakdownSchema(**breakdown.to_dict())


@payment_router.post("/initiate", status_code=201, response_model=ChargeResponse)
def initiate_payment(body: InitiatePaymentRequest) -> ChargeResponse:
    """Create a payment attempt for an order and submit its charge."""
    result = orchestrator.initiate_payment(
        order_id=body.order_id,
        method=body.method,
        payer=body.payer.model_dump(),
        escrow_requested=body.escrow_requested,
    )
    return ChargeResponse(**result)


@payment_router.post("/resubmit/{payment_id}", response_model=ChargeResponse)
def resubmit_charge(payment_id: str) -> ChargeResponse:
    """Retry the charge of a payment the gateway could not take."""
    return ChargeResponse(**orchestrator.resubmit_charge(payment_id))


@payment_router.get("/status/{payment_id}", response_model=PaymentStatusResponse)
async def payment_status(payment_id: str) -> PaymentStatusResponse:
    return _status_response(_get_payment(payment_id))


@payment_router.post("/verify/{payment_id}", response_model=VerificationResponse)
def verify_payment(payment_id: str) -> VerificationResponse:
    """Ask the gateway about a processing payment. Safe to poll."""
    return VerificationResponse(**orchestrator.verify_payment(payment_id))


@payment_router.get("/order/{order_id}", response_model=list[PaymentStatusResponse])
async def payments_for_order(order_id: str) -> list[PaymentStatusResponse]:
    """Every payment attempt made for an order, oldest first."""
    payments = current_domain.repository_for(Payment).find_by_order(order_id)
    return [_status_response(p) for p in payments]


@payment_router.get("/receipt/{payment_id}", response_model=ReceiptResponse)
async def get_receipt(payment_id: str) -> ReceiptResponse:
    payment = _get_payment(payment_id)
    if payment.status not in _RECEIPT_STATUSES:
        raise HTTPException(status_code=404, detail="Receipt not found")

    return ReceiptResponse(
        receipt_number=payment.receipt.number,
        payment_id=str(payment.id),
        order_id=str(payment.order_id),
        date=payment.completed_at,
        method=payment.method,
        amount=_amount(payment),
        currency=payment.currency,
        status=payment.status,
        url=payment.receipt.url,
    )


@payment_router.post("/receipt/{payment_id}/send", response_model=ReceiptSentResponse)
def send_receipt(payment_id: str, body: SendReceiptRequest | None = None) -> ReceiptSentResponse:
    """Record that the receipt was published to the buyer."""
    url = orchestrator.record_receipt_sent(payment_id, body.url if body else None)
    return ReceiptSentResponse(receipt_url=url)


@payment_router.post("/confirm-delivery/{payment_id}", response_model=StatusResponse)
def confirm_delivery(payment_id: str) -> StatusResponse:
    """Buyer confirms the goods arrived; escrowed funds go to the seller."""
    orchestrator.confirm_delivery(payment_id)
    return StatusResponse(status=_get_payment(payment_id).status)


@payment_router.post("/webhook", response_model=WebhookResponse)
async def payment_webhook(request: Request, verif_hash: str | None = Header(default=None, alias="verif-hash")):
    """Inbound gateway webhook.

    Unknown references are acknowledged with 200 so the gateway stops
    retrying; a bad signature is rejected with 401 before anything runs.
    """
    payload = await request.body()
    effect = await run_in_threadpool(orchestrator.process_webhook, verif_hash, payload)
    return WebhookResponse(status="received", effect=effect)


@payment_router.get("/callback", response_model=PaymentStatusResponse)
def payment_callback(tx_ref: str, transaction_id: str | None = None, status: str | None = None):
    """Payer's return from a hosted checkout. `status` is informational only."""
    payment = orchestrator.process_callback(tx_ref, transaction_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    logger.info(
        "Checkout callback received",
        transaction_ref=tx_ref,
        reported_status=status,
        payment_status=payment.status,
    )
    return _status_response(payment)


@payment_router.post("/cod-received/{payment_id}", response_model=StatusResponse)
def cash_received(payment_id: str) -> StatusResponse:
    """Seller or rider confirms the cash was collected."""
    orchestrator.confirm_cash_collected(payment_id)
    return StatusResponse(status=_get_payment(payment_id).status)


# --- Admin endpoints ---


@payment_router.post("/admin/refund/{payment_id}", response_model=StatusResponse)
def refund_payment(payment_id: str, body: RefundRequest) -> StatusResponse:
    status = orchestrator.process_refund(payment_id, body.amount, body.reason)
    return StatusResponse(status=status)


@payment_router.post("/admin/release-escrow/{payment_id}", response_model=StatusResponse)
def release_escrow(payment_id: str, body: ReleaseEscrowRequest | None = None) -> StatusResponse:
    orchestrator.release_escrow(payment_id, body.reason if body else "manual")
    return StatusResponse(status=_get_payment(payment_id).status)


@payment_router.post("/admin/dispute/{payment_id}", response_model=StatusResponse)
def dispute_escrow(payment_id: str, body: DisputeEscrowRequest) -> StatusResponse:
    orchestrator.dispute_escrow(payment_id, body.reason)
    return StatusResponse(status=_get_payment(payment_id).escrow_status.value)


@payment_router.post("/admin/resolve/{payment_id}", response_model=StatusResponse)
def resolve_dispute(payment_id: str, body: ResolveDisputeRequest | None = None) -> StatusResponse:
    orchestrator.resolve_dispute(payment_id, body.note if body else None)
    return StatusResponse(status=_get_payment(payment_id).escrow_status.value)


@payment_router.post("/admin/flag/{payment_id}", response_model=StatusResponse)
def flag_payment(payment_id: str, body: FlagPaymentRequest) -> StatusResponse:
    """Put a payment on the reconciliation list."""
    orchestrator.flag_for_reconciliation(payment_id, body.note)
    return StatusResponse(status="flagged")


@payment_router.get("/admin/flagged", response_model=list[PaymentDetailResponse])
async def flagged_payments() -> list[PaymentDetailResponse]:
    """Payments awaiting manual reconciliation."""
    return [_detail(p) for p in current_domain.repository_for(Payment).find_flagged()]


@payment_router.get("/admin/{payment_id}", response_model=PaymentDetailResponse)
async def payment_detail(payment_id: str) -> PaymentDetailResponse:
    """Full payment record including raw gateway codes."""
    return _detail(_get_payment(payment_id))


def _detail(payment: Payment) -> PaymentDetailResponse:
    escrow = payment.escrow
    gateway = payment.gateway
    refund = payment.refund
    return PaymentDetailResponse(
        payment_id=str(payment.id),
        order_id=str(payment.order_id),
        buyer_id=str(payment.buyer_id) if payment.buyer_id else None,
        seller_id=str(payment.seller_id),
        method=payment.method,
        method_category=payment.method_category,
        status=payment.status,
        currency=payment.currency,
        amount=_amount(payment),
        transaction_ref=payment.transaction_ref,
        escrow_status=payment.escrow_status.value,
        escrow_release_condition=escrow.release_condition if escrow else None,
        escrow_auto_release_deadline=escrow.auto_release_deadline if escrow else None,
        dispute_reason=escrow.dispute_reason if escrow else None,
        gateway_provider=gateway.provider if gateway else None,
        gateway_transaction_id=gateway.transaction_id if gateway else None,
        gateway_raw_code=gateway.raw_response_code if gateway else None,
        gateway_raw_message=gateway.raw_response_message if gateway else None,
        total_refunded=payment.total_refunded,
        refund_reason=refund.reason if refund else None,
        failure_reason=payment.failure_reason,
        flagged_for_reconciliation=bool(payment.flagged_for_reconciliation),
        reconciliation_note=payment.reconciliation_note,
        splits=[
            SplitSchema(
                recipient_role=s.recipient_role,
                recipient_id=s.recipient_id,
                amount=s.amount,
                status=s.status,
                paid_at=s.paid_at,
            )
            for s in payment.ordered_splits
        ],
        history=[HistoryEntrySchema(status=h.status, note=h.note, timestamp=h.timestamp) for h in payment.ordered_history],
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


def _order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        seller_id=str(order.seller_id),
        buyer_id=str(order.buyer_id) if order.buyer_id else None,
        status=order.status,
        delivery_method=order.delivery.method,
        delivery_status=order.delivery.status,
        delivery_fee=order.delivery.fee,
        subtotal=order.pricing.subtotal,
        total_price=order.pricing.total_price,
        currency=order.pricing.currency,
        payment_status=order.payment.status if order.payment else None,
        payment_id=order.payment.payment_id if order.payment else None,
        rider_name=order.rider.name if order.rider else None,
    )


@order_router.post("", status_code=201, response_model=OrderIdResponse)
def place_order(body: PlaceOrderRequest) -> OrderIdResponse:
    order_id = orchestrator.place_order(
        seller_id=body.seller_id,
        business_id=body.business_id,
        buyer_id=body.buyer_id,
        items=json.dumps([item.model_dump() for item in body.items]),
        customer=json.dumps(body.customer.model_dump()),
        delivery_method=body.delivery_method,
        delivery_fee=body.delivery_fee,
        delivery_address=body.delivery_address,
        instructions=body.instructions,
        tax=body.tax,
        discount=body.discount,
        currency=body.currency,
        payment_method=body.payment_method,
    )
    return OrderIdResponse(order_id=order_id)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(_get_order(order_id))


@order_router.put("/{order_id}/status", response_model=StatusResponse)
def update_order_status(order_id: str, body: UpdateOrderStatusRequest) -> StatusResponse:
    status = orchestrator.update_order_status(order_id, body.status, note=body.note, actor=body.actor)
    return StatusResponse(status=status)


@order_router.post("/{order_id}/cancel", response_model=CancelOrderResponse)
def cancel_order(order_id: str, body: CancelOrderRequest) -> CancelOrderResponse:
    cancelled = orchestrator.cancel_order(order_id, body.reason, actor=body.actor)
    return CancelOrderResponse(status="cancelled", cancelled_payments=cancelled)


@order_router.put("/{order_id}/delivery", response_model=StatusResponse)
def update_delivery_status(order_id: str, body: UpdateDeliveryStatusRequest) -> StatusResponse:
    """Rider or seller reports delivery progress. Returns the order status."""
    status = orchestrator.update_delivery_status(order_id, body.status, location=body.location, note=body.note)
    return StatusResponse(status=status)


@order_router.post("/{order_id}/rider", response_model=StatusResponse)
def assign_rider(order_id: str, body: AssignRiderRequest) -> StatusResponse:
    orchestrator.assign_rider(order_id, **body.model_dump())
    return StatusResponse(status=_get_order(order_id).delivery.status)


@order_router.get("/{order_id}/tracking", response_model=TrackingResponse)
async def track_order(order_id: str) -> TrackingResponse:
    order = _get_order(order_id)
    return TrackingResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        delivery_status=order.delivery.status,
        order_status=order.status,
        rider_name=order.rider.name if order.rider else None,
        rider_phone=order.rider.phone if order.rider else None,
        tracking=[
            TrackingEntrySchema(status=t.status, location=t.location, note=t.note, timestamp=t.timestamp)
            for t in order.ordered_tracking
        ],
    )
