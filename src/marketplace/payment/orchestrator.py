"""Serialized entry points for everything that mutates payments and orders.

HTTP routes, the webhook receiver and the periodic sweeps call these
functions instead of processing commands directly. Each function takes the
per-aggregate locks of everything the command will write (order first, then
payments) and holds them around the whole unit of work, so two webhooks or a
webhook and an admin release can never interleave on the same payment.

Commands are processed synchronously; handlers return their results.
"""

from contextlib import contextmanager
from datetime import UTC, datetime

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from marketplace.errors import ConcurrencyConflictError, GatewayError, InvalidStateError, UnmatchedReferenceError
from marketplace.gateway import get_gateway
from marketplace.gateway.port import GATEWAY_FAILED, GATEWAY_SUCCESSFUL
from marketplace.order.delivery import AssignRider, UpdateDeliveryStatus
from marketplace.order.order import OrderStatus
from marketplace.order.placement import PlaceOrder
from marketplace.order.status import CancelOrder, UpdateOrderStatus
from marketplace.payment.cancellation import CancelPayment
from marketplace.payment.cash_collection import ConfirmCashCollected
from marketplace.payment.escrow import DisputeEscrow, ReleaseEscrow, ResolveDispute
from marketplace.payment.gateway_result import ApplyGatewayResult
from marketplace.payment.initiation import InitiatePayment, SubmitCharge
from marketplace.payment.payment import OPEN_STATUSES, Payment, PaymentStatus, ReleaseCondition
from marketplace.payment.receipt import RecordReceiptSent
from marketplace.payment.reconciliation import FlagForReconciliation, FlagStalePayment
from marketplace.payment.refund import ProcessRefund
from marketplace.payment.verification import VerifyPayment
from marketplace.utils.locking import aggregate_locks

logger = structlog.get_logger(__name__)


def _dispatch(command):
    return current_domain.process(command, asynchronous=False)


def _payments():
    return current_domain.repository_for(Payment)


def _open_payment_keys(order_id: str) -> list[tuple[str, str]]:
    return [
        ("payment", str(p.id)) for p in _payments().find_by_order(order_id) if PaymentStatus(p.status) in OPEN_STATUSES
    ]


@contextmanager
def _payment_locks(payment_id: str):
    """Hold the order and payment locks for one payment."""
    payment = _payments().get(payment_id)
    with aggregate_locks.hold_all(("order", str(payment.order_id)), ("payment", str(payment.id))):
        yield payment


# ---------------------------------------------------------------------------
# Initiation
# ---------------------------------------------------------------------------
def _submit_charge(payment_id: str) -> dict:
    try:
        return _dispatch(SubmitCharge(payment_id=payment_id))
    except GatewayError as exc:
        exc.payment_id = payment_id
        logger.warning("Charge submission failed, payment left pending", payment_id=payment_id, error=str(exc))
        raise


def initiate_payment(
    order_id: str,
    method: str,
    payer: dict | None = None,
    escrow_requested: bool = False,
) -> dict:
    """Create a payment attempt for an order and submit its charge.

    Raises GatewayError (carrying the payment id) when the rail fails; the
    payment then stays pending and resubmit_charge() can retry it.
    """
    payer = payer or {}
    with aggregate_locks.hold("order", str(order_id)):
        with aggregate_locks.hold_all(*_open_payment_keys(str(order_id))):
            payment_id = _dispatch(
                InitiatePayment(
                    order_id=order_id,
                    method=method,
                    payer_name=payer.get("name"),
                    payer_phone=payer.get("phone"),
                    payer_email=payer.get("email"),
                    payer_network=payer.get("network"),
                    escrow_requested=escrow_requested,
                )
            )
        with aggregate_locks.hold("payment", payment_id):
            return _submit_charge(payment_id)


def resubmit_charge(payment_id: str) -> dict:
    """Retry the charge of a payment left pending by a gateway error."""
    with _payment_locks(payment_id):
        return _submit_charge(payment_id)


# ---------------------------------------------------------------------------
# Gateway results
# ---------------------------------------------------------------------------
def apply_gateway_result(
    transaction_ref: str,
    status: str,
    provider_transaction_id: str | None = None,
    reason: str | None = None,
    raw_code: str | None = None,
    raw_message: str | None = None,
    provider: str | None = None,
    source: str = "webhook",
    amount: float | None = None,
    currency: str | None = None,
) -> str | None:
    """Apply a gateway verdict. Unknown references are logged and swallowed.

    Returns the effect ("applied", "duplicate", "rejected", "flagged",
    "ignored"), or None when the reference is unknown.
    """
    match = _payments().find_by_transaction_ref(transaction_ref)
    if match is None:
        logger.warning("Unmatched gateway reference", transaction_ref=transaction_ref, source=source)
        return None

    with aggregate_locks.hold_all(("order", str(match.order_id)), ("payment", str(match.id))):
        try:
            return _dispatch(
                ApplyGatewayResult(
                    transaction_ref=transaction_ref,
                    status=status,
                    provider=provider,
                    provider_transaction_id=provider_transaction_id,
                    reason=reason,
                    raw_code=raw_code,
                    raw_message=raw_message,
                    source=source,
                    amount=amount,
                    currency=currency,
                )
            )
        except UnmatchedReferenceError:
            logger.warning("Unmatched gateway reference", transaction_ref=transaction_ref, source=source)
            return None


def process_webhook(signature: str | None, payload: bytes | str) -> str | None:
    """Authenticate and apply an inbound gateway webhook.

    InvalidSignatureError propagates before anything else happens.
    """
    gateway = get_gateway()
    event = gateway.parse_webhook(signature, payload)
    if event.status not in (GATEWAY_SUCCESSFUL, GATEWAY_FAILED):
        logger.info("Non-final webhook ignored", transaction_ref=event.transaction_ref, status=event.status)
        return "ignored"
    return apply_gateway_result(
        event.transaction_ref,
        event.status,
        provider_transaction_id=event.provider_transaction_id,
        reason=event.reason,
        raw_code=event.raw_code,
        raw_message=event.raw_message,
        provider=gateway.provider,
        source="webhook",
        amount=event.amount,
        currency=event.currency,
    )


def process_callback(transaction_ref: str, provider_transaction_id: str | None = None) -> Payment | None:
    """Handle the payer's return from a hosted checkout.

    The status in the redirect URL is not trusted; the gateway is asked.
    """
    match = _payments().find_by_transaction_ref(transaction_ref)
    if match is None:
        logger.warning("Unmatched gateway reference", transaction_ref=transaction_ref, source="callback")
        return None
    if match.status == PaymentStatus.PROCESSING.value:
        gateway = get_gateway()
        result = gateway.verify(transaction_ref, provider_transaction_id)
        if result.status in (GATEWAY_SUCCESSFUL, GATEWAY_FAILED):
            apply_gateway_result(
                transaction_ref,
                result.status,
                provider_transaction_id=result.provider_transaction_id,
                reason=result.reason,
                raw_code=result.raw_code,
                raw_message=result.raw_message,
                provider=gateway.provider,
                source="callback",
                amount=result.amount,
                currency=result.currency,
            )
    return _payments().get(str(match.id))


def verify_payment(payment_id: str) -> dict:
    with _payment_locks(payment_id):
        return _dispatch(VerifyPayment(payment_id=payment_id))


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------
def release_escrow(payment_id: str, reason: str = ReleaseCondition.MANUAL.value) -> None:
    with _payment_locks(payment_id):
        _dispatch(ReleaseEscrow(payment_id=payment_id, reason=reason))


def confirm_delivery(payment_id: str) -> None:
    """Buyer confirms the goods arrived; held funds go to the seller."""
    release_escrow(payment_id, ReleaseCondition.DELIVERY_CONFIRMED.value)


def dispute_escrow(payment_id: str, reason: str) -> None:
    with _payment_locks(payment_id):
        _dispatch(DisputeEscrow(payment_id=payment_id, reason=reason))


def resolve_dispute(payment_id: str, note: str | None = None) -> None:
    with _payment_locks(payment_id):
        _dispatch(ResolveDispute(payment_id=payment_id, note=note))


def release_due_escrows(now: datetime | None = None) -> list[str]:
    """Release every held escrow whose auto-release deadline has passed.

    Payments that moved on (released, refunded, disputed) or are locked by
    another request are skipped and picked up by the next sweep if still due.
    """
    now = now or datetime.now(UTC)
    due = [p for p in _payments().find_with_escrow_held() if p.is_escrow_due(now)]
    released = []
    for payment in due:
        payment_id = str(payment.id)
        try:
            with aggregate_locks.hold_all(("order", str(payment.order_id)), ("payment", payment_id)):
                _dispatch(ReleaseEscrow(payment_id=payment_id, reason=ReleaseCondition.TIME_ELAPSED.value))
            released.append(payment_id)
        except InvalidStateError:
            logger.info("Escrow no longer held, skipped", payment_id=payment_id)
        except (ConcurrencyConflictError, ExpectedVersionError):
            logger.warning("Escrow locked or changed by another request, skipped", payment_id=payment_id)

    logger.info("Escrow sweep finished", due=len(due), released=len(released))
    return released


# ---------------------------------------------------------------------------
# Refunds, cash, cancellation, receipts
# ---------------------------------------------------------------------------
def process_refund(payment_id: str, amount: float, reason: str) -> str:
    with _payment_locks(payment_id):
        return _dispatch(ProcessRefund(payment_id=payment_id, amount=amount, reason=reason))


def confirm_cash_collected(payment_id: str) -> None:
    with _payment_locks(payment_id):
        _dispatch(ConfirmCashCollected(payment_id=payment_id))


def cancel_payment(payment_id: str, reason: str) -> None:
    with _payment_locks(payment_id):
        _dispatch(CancelPayment(payment_id=payment_id, reason=reason))


def record_receipt_sent(payment_id: str, url: str | None = None) -> str:
    with aggregate_locks.hold("payment", payment_id):
        return _dispatch(RecordReceiptSent(payment_id=payment_id, url=url))


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------
def flag_for_reconciliation(payment_id: str, note: str) -> None:
    """Admin flags a payment for manual review."""
    with aggregate_locks.hold("payment", payment_id):
        _dispatch(FlagForReconciliation(payment_id=payment_id, note=note))


def flag_stale_payments(now: datetime | None = None) -> list[str]:
    """Flag processing payments older than the processing timeout."""
    now = now or datetime.now(UTC)
    flagged = []
    for payment in _payments().find_processing_unflagged():
        payment_id = str(payment.id)
        try:
            with aggregate_locks.hold("payment", payment_id):
                if _dispatch(FlagStalePayment(payment_id=payment_id, as_of=now)):
                    flagged.append(payment_id)
        except (ConcurrencyConflictError, ExpectedVersionError):
            logger.warning("Payment locked or changed by another request, skipped", payment_id=payment_id)

    if flagged:
        logger.warning("Stale payments flagged for reconciliation", count=len(flagged))
    return flagged


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
def place_order(**order_data) -> str:
    return _dispatch(PlaceOrder(**order_data))


def update_order_status(order_id: str, status: str, note: str | None = None, actor: str | None = None) -> str:
    with aggregate_locks.hold("order", str(order_id)):
        payment_keys = _open_payment_keys(str(order_id)) if status == OrderStatus.CANCELLED.value else []
        with aggregate_locks.hold_all(*payment_keys):
            return _dispatch(UpdateOrderStatus(order_id=order_id, status=status, note=note, actor=actor))


def cancel_order(order_id: str, reason: str, actor: str | None = None) -> list[str]:
    """Cancel an order and its open payment attempts together."""
    with aggregate_locks.hold("order", str(order_id)):
        with aggregate_locks.hold_all(*_open_payment_keys(str(order_id))):
            return _dispatch(CancelOrder(order_id=order_id, reason=reason, actor=actor))


def update_delivery_status(
    order_id: str,
    status: str,
    location: str | None = None,
    note: str | None = None,
) -> str:
    with aggregate_locks.hold("order", str(order_id)):
        return _dispatch(UpdateDeliveryStatus(order_id=order_id, status=status, location=location, note=note))


def assign_rider(order_id: str, **rider) -> None:
    """Assign a rider; rider shares of the order's payments are named after them."""
    with aggregate_locks.hold("order", str(order_id)):
        payment_keys = [("payment", str(p.id)) for p in _payments().find_by_order(str(order_id))]
        with aggregate_locks.hold_all(*payment_keys):
            _dispatch(AssignRider(order_id=order_id, **rider))
