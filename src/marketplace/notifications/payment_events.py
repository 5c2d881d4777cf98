"""Notifies buyers and sellers when money moves.

Listens for PaymentSucceeded, PaymentFailed, EscrowReleased and
RefundProcessed.
"""

import structlog
from protean.utils.mixins import handle

from marketplace.domain import marketplace
from marketplace.notifications.dispatch import (
    ESCROW_RELEASED,
    PAYMENT_FAILED,
    PAYMENT_RECEIVED,
    PAYMENT_SUCCESS,
    REFUND_PROCESSED,
    send_notice,
)
from marketplace.payment.events import EscrowReleased, PaymentFailed, PaymentSucceeded, RefundProcessed
from marketplace.payment.payment import Payment

logger = structlog.get_logger(__name__)


def _money(amount: float, currency: str) -> str:
    return f"{amount:,.0f} {currency}"


@marketplace.event_handler(part_of=Payment)
class PaymentNotificationsHandler:
    """Reacts to Payment events to notify the people involved."""

    @handle(PaymentSucceeded)
    def on_payment_succeeded(self, event: PaymentSucceeded) -> None:
        send_notice(
            PAYMENT_SUCCESS,
            event.buyer_id,
            {
                "order_id": str(event.order_id),
                "payment_id": str(event.payment_id),
                "receipt_number": event.receipt_number,
                "message": (
                    f"Your payment of {_money(event.total, event.currency)} was successful. "
                    f"Receipt: {event.receipt_number}"
                ),
            },
        )
        send_notice(
            PAYMENT_RECEIVED,
            event.seller_id,
            {
                "order_id": str(event.order_id),
                "payment_id": str(event.payment_id),
                "escrow_held": event.escrow_held,
                "message": f"You received a payment of {_money(event.subtotal, event.currency)}",
            },
        )

    @handle(PaymentFailed)
    def on_payment_failed(self, event: PaymentFailed) -> None:
        send_notice(
            PAYMENT_FAILED,
            event.buyer_id,
            {
                "order_id": str(event.order_id),
                "payment_id": str(event.payment_id),
                "message": f"Your payment could not be processed. {event.reason}. Please try again.",
            },
        )

    @handle(EscrowReleased)
    def on_escrow_released(self, event: EscrowReleased) -> None:
        send_notice(
            ESCROW_RELEASED,
            event.seller_id,
            {
                "order_id": str(event.order_id),
                "payment_id": str(event.payment_id),
                "release_condition": event.release_condition,
                "message": f"{_money(event.amount, event.currency)} has been released to your account.",
            },
        )

    @handle(RefundProcessed)
    def on_refund_processed(self, event: RefundProcessed) -> None:
        if not event.buyer_id:
            logger.info("RefundProcessed has no buyer, skipping notification", payment_id=str(event.payment_id))
            return

        send_notice(
            REFUND_PROCESSED,
            event.buyer_id,
            {
                "order_id": str(event.order_id),
                "payment_id": str(event.payment_id),
                "is_full_refund": event.is_full_refund,
                "message": f"A refund of {_money(event.amount, event.currency)} has been processed.",
            },
        )
