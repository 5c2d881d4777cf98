"""Receipt delivery bookkeeping.

The receipt number is fixed when the payment is created; this only records
where the receipt was published and when it was sent.
"""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.payment.payment import Payment


@marketplace.command(part_of="Payment")
class RecordReceiptSent:
    payment_id = Identifier(required=True)
    url = String(max_length=1000)


def receipt_url_for(payment: Payment) -> str:
    return f"{get_settings().receipt_base_url.rstrip('/')}/{payment.receipt.number}"


@marketplace.command_handler(part_of=Payment)
class RecordReceiptSentHandler:
    @handle(RecordReceiptSent)
    def record_receipt_sent(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.record_receipt_sent(command.url or receipt_url_for(payment))
        repo.add(payment)
        return payment.receipt.url
