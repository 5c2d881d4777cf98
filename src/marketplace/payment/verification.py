"""Payment verification polling: command and handler.

Clients may poll as often as they like. Only processing payments are ever
checked with the gateway, and at most once per verify_min_interval_seconds.
A payment the gateway still reports as pending after
processing_timeout_minutes fails with reason "verification_timeout".
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.gateway import get_gateway
from marketplace.gateway.port import GATEWAY_FAILED, GATEWAY_SUCCESSFUL
from marketplace.order.payment_sync import apply_payment_to_order
from marketplace.payment.gateway_result import apply_outcome
from marketplace.payment.payment import Payment, PaymentStatus

logger = structlog.get_logger(__name__)

VERIFICATION_TIMEOUT = "verification_timeout"


@marketplace.command(part_of="Payment")
class VerifyPayment:
    payment_id = Identifier(required=True)


def _result(payment: Payment, checked_gateway: bool) -> dict:
    return {
        "payment_id": str(payment.id),
        "status": payment.status,
        "checked_gateway": checked_gateway,
        "message": payment.buyer_message(),
    }


@marketplace.command_handler(part_of=Payment)
class VerifyPaymentHandler:
    @handle(VerifyPayment)
    def verify_payment(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)

        if payment.status != PaymentStatus.PROCESSING.value:
            return _result(payment, checked_gateway=False)

        settings = get_settings()
        now = datetime.now(UTC)
        if not payment.is_verification_due(now, settings.verify_min_interval_seconds):
            logger.debug("Verification throttled", payment_id=str(payment.id))
            return _result(payment, checked_gateway=False)

        payment.record_verification(now)
        result = get_gateway().verify(
            payment.transaction_ref,
            payment.gateway.transaction_id if payment.gateway else None,
        )

        if result.status in (GATEWAY_SUCCESSFUL, GATEWAY_FAILED):
            apply_outcome(
                payment,
                result.status,
                provider_transaction_id=result.provider_transaction_id,
                reason=result.reason,
                raw_code=result.raw_code,
                raw_message=result.raw_message,
                source="verification",
                amount=result.amount,
                currency=result.currency,
            )
        elif payment.processing_timed_out(now, settings.processing_timeout_minutes):
            payment.fail(VERIFICATION_TIMEOUT)
            apply_payment_to_order(payment)
            logger.warning("Payment verification timed out", payment_id=str(payment.id))

        repo.add(payment)
        return _result(payment, checked_gateway=True)
