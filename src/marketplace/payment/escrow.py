"""Escrow: commands and handler for release, dispute and dispute resolution.

Release reasons: delivery_confirmed (buyer), time_elapsed (auto-release
sweep) and manual (admin). Releasing anything but held escrow raises
InvalidStateError, so a second release never pays out twice.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.payment_sync import apply_payment_to_order
from marketplace.payment.payment import Payment

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Payment")
class ReleaseEscrow:
    payment_id = Identifier(required=True)
    reason = String(required=True, max_length=30)  # delivery_confirmed, time_elapsed, manual


@marketplace.command(part_of="Payment")
class DisputeEscrow:
    payment_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@marketplace.command(part_of="Payment")
class ResolveDispute:
    payment_id = Identifier(required=True)
    note = String(max_length=500)


@marketplace.command_handler(part_of=Payment)
class EscrowHandler:
    @handle(ReleaseEscrow)
    def release_escrow(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.release_escrow(command.reason)
        repo.add(payment)
        apply_payment_to_order(payment)
        logger.info(
            "Escrow released",
            payment_id=str(payment.id),
            order_id=str(payment.order_id),
            reason=command.reason,
        )

    @handle(DisputeEscrow)
    def dispute_escrow(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.dispute_escrow(command.reason)
        repo.add(payment)
        logger.warning("Escrow disputed", payment_id=str(payment.id), reason=command.reason)

    @handle(ResolveDispute)
    def resolve_dispute(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.resolve_dispute(command.note)
        repo.add(payment)
        logger.info("Escrow dispute resolved", payment_id=str(payment.id))
