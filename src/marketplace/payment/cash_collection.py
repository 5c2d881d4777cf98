"""Cash on delivery: the rider or seller confirms the cash was collected."""

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.payment_sync import apply_payment_to_order
from marketplace.payment.payment import Payment

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Payment")
class ConfirmCashCollected:
    payment_id = Identifier(required=True)


@marketplace.command_handler(part_of=Payment)
class ConfirmCashCollectedHandler:
    @handle(ConfirmCashCollected)
    def confirm_cash_collected(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.confirm_cash_collected()
        repo.add(payment)
        apply_payment_to_order(payment)
        logger.info("Cash collected", payment_id=str(payment.id), order_id=str(payment.order_id))
