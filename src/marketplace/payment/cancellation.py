"""Payment cancellation: command and handler."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.payment.payment import Payment


@marketplace.command(part_of="Payment")
class CancelPayment:
    payment_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@marketplace.command_handler(part_of=Payment)
class CancelPaymentHandler:
    @handle(CancelPayment)
    def cancel_payment(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.cancel(command.reason)
        repo.add(payment)
