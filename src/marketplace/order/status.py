"""Order status: commands and handler for status updates and cancellation.

Cancelling an order also cancels its open payment attempts in the same unit
of work, so a buyer can never be charged for a cancelled order.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order, OrderStatus
from marketplace.payment.payment import OPEN_STATUSES, Payment, PaymentStatus

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class UpdateOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=20)
    note = String(max_length=500)
    actor = String(max_length=100)


@marketplace.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    actor = String(max_length=100)


def _cancel_open_payments(order: Order) -> list[str]:
    repo = current_domain.repository_for(Payment)
    cancelled = []
    for attempt in repo.find_by_order(str(order.id)):
        if PaymentStatus(attempt.status) not in OPEN_STATUSES:
            continue
        payment = repo.get(attempt.id)
        payment.cancel("Order cancelled")
        repo.add(payment)
        cancelled.append(str(payment.id))
    return cancelled


@marketplace.command_handler(part_of=Order)
class OrderStatusHandler:
    @handle(UpdateOrderStatus)
    def update_order_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.update_status(command.status, note=command.note, actor=command.actor)
        if order.status == OrderStatus.CANCELLED.value:
            _cancel_open_payments(order)
        repo.add(order)
        return order.status

    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.cancel(command.reason, actor=command.actor)
        cancelled = _cancel_open_payments(order)
        repo.add(order)
        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            cancelled_payments=len(cancelled),
            actor=command.actor,
        )
        return cancelled
