"""Reconciliation: flag payments stuck in processing.

A processing payment that neither a webhook nor a poll has resolved within
processing_timeout_minutes is flagged for manual review rather than silently
abandoned. Flagging does not change the payment status.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.payment.payment import Payment, PaymentStatus

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Payment")
class FlagForReconciliation:
    payment_id = Identifier(required=True)
    note = String(required=True, max_length=500)


@marketplace.command(part_of="Payment")
class FlagStalePayment:
    """Flag one payment if it is still processing past the timeout."""

    payment_id = Identifier(required=True)
    as_of = DateTime()


@marketplace.command_handler(part_of=Payment)
class ReconciliationHandler:
    @handle(FlagForReconciliation)
    def flag_for_reconciliation(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.flag_for_reconciliation(command.note)
        repo.add(payment)

    @handle(FlagStalePayment)
    def flag_stale_payment(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        as_of = command.as_of or datetime.now(UTC)
        timeout = get_settings().processing_timeout_minutes

        if payment.status != PaymentStatus.PROCESSING.value or payment.flagged_for_reconciliation:
            return False
        if not payment.processing_timed_out(as_of, timeout):
            return False

        payment.flag_for_reconciliation(f"Still processing after {timeout} minutes")
        repo.add(payment)
        logger.warning("Stale processing payment flagged", payment_id=str(payment.id))
        return True
