"""Gateway results: the single place gateway verdicts reach a payment.

Webhooks, the redirect callback, verification polling and instant settlement
all end up in apply_outcome(), which calls Payment.apply_gateway_outcome()
and keeps the order mirror in step.
"""

import structlog
from protean import handle
from protean.fields import Float, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import UnmatchedReferenceError
from marketplace.order.payment_sync import apply_payment_to_order
from marketplace.payment.payment import OutcomeEffect, Payment

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Payment")
class ApplyGatewayResult:
    """A gateway verdict for the payment identified by our transaction ref."""

    transaction_ref = String(required=True, max_length=100)
    status = String(required=True, max_length=20)  # successful, failed, pending
    provider = String(max_length=50)
    provider_transaction_id = String(max_length=255)
    reason = String(max_length=500)
    raw_code = String(max_length=100)
    raw_message = String(max_length=1000)
    source = String(max_length=20, default="webhook")
    amount = Float()
    currency = String(max_length=10)


def apply_outcome(
    payment: Payment,
    status: str,
    provider_transaction_id: str | None = None,
    reason: str | None = None,
    raw_code: str | None = None,
    raw_message: str | None = None,
    provider: str | None = None,
    source: str = "webhook",
    amount: float | None = None,
    currency: str | None = None,
) -> OutcomeEffect:
    """Apply a verdict to a loaded payment and stage the changes."""
    previous_status = payment.status
    effect = payment.apply_gateway_outcome(
        status,
        provider_transaction_id=provider_transaction_id,
        reason=reason,
        raw_code=raw_code,
        raw_message=raw_message,
        provider=provider,
        source=source,
        amount=amount,
        currency=currency,
    )

    if effect == OutcomeEffect.APPLIED:
        current_domain.repository_for(Payment).add(payment)
        apply_payment_to_order(payment)
        logger.info(
            "Gateway outcome applied",
            payment_id=str(payment.id),
            source=source,
            previous_status=previous_status,
            status=payment.status,
        )
    elif effect == OutcomeEffect.FLAGGED:
        current_domain.repository_for(Payment).add(payment)
        logger.warning(
            "Gateway success flagged for reconciliation",
            payment_id=str(payment.id),
            source=source,
            status=payment.status,
            note=payment.reconciliation_note,
        )
    elif effect == OutcomeEffect.DUPLICATE:
        logger.info(
            "Duplicate gateway outcome ignored",
            payment_id=str(payment.id),
            source=source,
            outcome=status,
            status=payment.status,
        )
    elif effect == OutcomeEffect.REJECTED:
        logger.warning(
            "Gateway failure after settlement rejected",
            payment_id=str(payment.id),
            source=source,
            outcome=status,
            status=payment.status,
            raw_code=raw_code,
        )
    return effect


@marketplace.command_handler(part_of=Payment)
class ApplyGatewayResultHandler:
    @handle(ApplyGatewayResult)
    def apply_gateway_result(self, command):
        repo = current_domain.repository_for(Payment)
        match = repo.find_by_transaction_ref(command.transaction_ref)
        if match is None:
            raise UnmatchedReferenceError(command.transaction_ref)

        payment = repo.get(match.id)
        effect = apply_outcome(
            payment,
            command.status,
            provider_transaction_id=command.provider_transaction_id,
            reason=command.reason,
            raw_code=command.raw_code,
            raw_message=command.raw_message,
            provider=command.provider,
            source=command.source or "webhook",
            amount=command.amount,
            currency=command.currency,
        )
        return effect.value
