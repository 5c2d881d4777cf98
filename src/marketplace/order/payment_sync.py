"""Keeps Order.payment in step with the authoritative Payment.

sync_order_payment() is the only code that writes the order's payment mirror.
It runs inside the same unit of work as the payment transition that triggered
it, and applying the same payment state twice changes nothing.
"""

import structlog
from protean.utils.globals import current_domain

from marketplace.order.order import Order, OrderPaymentStatus
from marketplace.payment.methods import order_payment_method_for
from marketplace.payment.payment import Payment, PaymentStatus

logger = structlog.get_logger(__name__)

_MIRROR = {
    PaymentStatus.PENDING: OrderPaymentStatus.PENDING,
    PaymentStatus.PROCESSING: OrderPaymentStatus.PENDING,
    PaymentStatus.SUCCESSFUL: OrderPaymentStatus.PAID,
    PaymentStatus.HELD_IN_ESCROW: OrderPaymentStatus.PAID,
    PaymentStatus.RELEASED: OrderPaymentStatus.PAID,
    PaymentStatus.FAILED: OrderPaymentStatus.FAILED,
    PaymentStatus.REFUNDED: OrderPaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED: OrderPaymentStatus.REFUNDED,
}


def mirrored_status(payment: Payment) -> OrderPaymentStatus | None:
    """Order payment status for a payment state. Cancelled attempts map to nothing."""
    return _MIRROR.get(PaymentStatus(payment.status))


def sync_order_payment(order: Order, payment: Payment) -> bool:
    """Mirror `payment` onto `order`. Returns True when the order changed.

    An attempt that is not the order's current payment never overwrites a
    mirror that already shows the order as paid.
    """
    if str(payment.order_id) != str(order.id):
        raise ValueError(f"Payment {payment.id} does not belong to order {order.id}")

    target = mirrored_status(payment)
    if target is None:
        return False

    current = order.payment
    other_payment = current is not None and current.payment_id and current.payment_id != str(payment.id)
    if other_payment and current.status == OrderPaymentStatus.PAID.value and target != OrderPaymentStatus.PAID:
        logger.info(
            "Ignoring stale payment attempt for paid order",
            order_id=str(order.id),
            payment_id=str(payment.id),
            payment_status=payment.status,
        )
        return False

    paid_at = payment.completed_at if target == OrderPaymentStatus.PAID else None
    return order.record_payment_mirror(
        payment_id=str(payment.id),
        method=order_payment_method_for(payment.method),
        status=target.value,
        transaction_id=payment.gateway.transaction_id if payment.gateway else None,
        paid_at=paid_at,
    )


def apply_payment_to_order(payment: Payment) -> Order:
    """Load the payment's order, sync its mirror and stage it in the current unit of work."""
    repo = current_domain.repository_for(Order)
    order = repo.get(str(payment.order_id))
    if sync_order_payment(order, payment):
        repo.add(order)
        logger.debug(
            "Order payment mirror updated",
            order_id=str(order.id),
            payment_id=str(payment.id),
            payment_status=order.payment.status,
        )
    return order
