"""Payment initiation: commands and handlers.

Initiation is two steps, each its own unit of work:

1. InitiatePayment persists a pending Payment (fees, splits, receipt number
   and transaction ref fixed once) and supersedes older pending attempts.
2. SubmitCharge sends the charge to the gateway branch for the method
   category and records the outcome.

A GatewayError raised while submitting rolls back step 2 only, so the payment
stays pending and SubmitCharge can be dispatched again.
"""

import structlog
from protean import handle
from protean.fields import Boolean, Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import InvalidStateError
from marketplace.gateway import get_gateway
from marketplace.gateway.port import GATEWAY_SUCCESSFUL, ChargeRequest
from marketplace.order.order import Order, OrderPaymentStatus, OrderStatus
from marketplace.order.payment_sync import apply_payment_to_order, sync_order_payment
from marketplace.payment.methods import parse_method
from marketplace.payment.payment import Payment, PaymentStatus

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Payment")
class InitiatePayment:
    """Create a pending payment attempt for an order."""

    order_id = Identifier(required=True)
    method = String(required=True, max_length=50)
    payer_name = String(max_length=200)
    payer_phone = String(max_length=30)
    payer_email = String(max_length=254)
    payer_network = String(max_length=20)
    escrow_requested = Boolean(default=False)


@marketplace.command(part_of="Payment")
class SubmitCharge:
    """Submit (or resubmit) the charge of a pending payment to the gateway."""

    payment_id = Identifier(required=True)


@marketplace.command_handler(part_of=Payment)
class InitiatePaymentHandler:
    @handle(InitiatePayment)
    def initiate_payment(self, command):
        parse_method(command.method)

        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)
        order = order_repo.get(command.order_id)

        if OrderStatus(order.status) in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise InvalidStateError({"order": [f"Cannot pay for a {order.status} order"]})
        if order.payment and order.payment.status == OrderPaymentStatus.PAID.value:
            raise InvalidStateError({"order": ["Order is already paid"]})

        attempts = payment_repo.find_by_order(str(order.id))
        if any(p.status == PaymentStatus.PROCESSING.value for p in attempts):
            raise InvalidStateError({"payment": ["Another payment attempt for this order is still processing"]})

        for attempt in attempts:
            if attempt.status == PaymentStatus.PENDING.value:
                superseded = payment_repo.get(attempt.id)
                superseded.cancel("Superseded by a new payment attempt")
                payment_repo.add(superseded)
                logger.info(
                    "Superseded pending payment attempt",
                    payment_id=str(superseded.id),
                    order_id=str(order.id),
                )

        payment = Payment.create(
            order_id=str(order.id),
            seller_id=str(order.seller_id),
            buyer_id=str(order.buyer_id) if order.buyer_id else None,
            business_id=str(order.business_id) if order.business_id else None,
            method=command.method,
            subtotal=order.payable_subtotal,
            delivery_fee=order.delivery.fee or 0.0,
            order_tax=order.pricing.tax or 0.0,
            delivery_method=order.delivery.method,
            payer={
                "name": command.payer_name or (order.customer.name if order.customer else None),
                "phone": command.payer_phone or (order.customer.phone if order.customer else None),
                "email": command.payer_email or (order.customer.email if order.customer else None),
                "network": command.payer_network,
            },
            escrow_requested=bool(command.escrow_requested),
            currency=order.pricing.currency,
            rider_id=order.rider.rider_id if order.rider else None,
        )
        payment_repo.add(payment)

        if sync_order_payment(order, payment):
            order_repo.add(order)

        logger.info(
            "Payment initiated",
            payment_id=str(payment.id),
            order_id=str(order.id),
            method=payment.method,
            total=payment.amount.total,
            escrow=payment.escrow.enabled,
        )
        return str(payment.id)


@marketplace.command_handler(part_of=Payment)
class SubmitChargeHandler:
    @handle(SubmitCharge)
    def submit_charge(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)

        if payment.status != PaymentStatus.PENDING.value:
            raise InvalidStateError({"status": [f"Only pending payments can be submitted, this one is {payment.status}"]})

        if payment.is_cash_on_delivery:
            logger.info("Cash on delivery payment awaiting collection", payment_id=str(payment.id))
            return {
                "payment_id": str(payment.id),
                "status": payment.status,
                "transaction_ref": payment.transaction_ref,
                "requires_action": False,
                "action_type": None,
                "redirect_url": None,
                "message": "Pay the rider in cash when your order arrives",
            }

        gateway = get_gateway()
        result = gateway.charge(
            ChargeRequest(
                payment_id=str(payment.id),
                order_id=str(payment.order_id),
                transaction_ref=payment.transaction_ref,
                method=payment.method,
                method_category=payment.method_category,
                amount=payment.amount.total,
                currency=payment.currency,
                payer_name=payment.payer.name if payment.payer else None,
                payer_phone=payment.payer.phone if payment.payer else None,
                payer_email=payment.payer.email if payment.payer else None,
                payer_network=payment.payer.network if payment.payer else None,
            )
        )

        if not result.accepted:
            payment.record_charge_declined(
                provider=result.provider,
                reason=result.message or "Charge declined",
                raw_code=result.raw_code,
                raw_message=result.raw_message,
            )
        elif result.status == GATEWAY_SUCCESSFUL:
            payment.apply_gateway_outcome(
                GATEWAY_SUCCESSFUL,
                provider_transaction_id=result.provider_transaction_id,
                raw_code=result.raw_code,
                raw_message=result.raw_message,
                provider=result.provider,
                source="charge",
            )
        else:
            payment.mark_processing(
                provider=result.provider,
                provider_transaction_id=result.provider_transaction_id,
                redirect_url=result.redirect_url,
                raw_code=result.raw_code,
                raw_message=result.raw_message,
            )

        repo.add(payment)
        apply_payment_to_order(payment)

        logger.info(
            "Payment charge submitted",
            payment_id=str(payment.id),
            provider=result.provider,
            accepted=result.accepted,
            status=payment.status,
        )
        return {
            "payment_id": str(payment.id),
            "status": payment.status,
            "transaction_ref": payment.transaction_ref,
            "requires_action": result.requires_action,
            "action_type": result.action_type,
            "redirect_url": result.redirect_url,
            "message": result.message if result.accepted else payment.buyer_message(),
        }
