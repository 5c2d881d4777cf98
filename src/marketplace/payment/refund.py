"""Refunds: command and handler.

The request is validated against the payment before the gateway is called.
Gateway-settled payments are refunded through the gateway first; cash and
offline payments are recorded as manual refunds.
"""

import structlog
from protean import handle
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.errors import GatewayError
from marketplace.gateway import get_gateway
from marketplace.order.payment_sync import apply_payment_to_order
from marketplace.payment.payment import Payment

logger = structlog.get_logger(__name__)

MANUAL_REFUND_ID = "MANUAL-REFUND"


@marketplace.command(part_of="Payment")
class ProcessRefund:
    payment_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(required=True, max_length=500)


@marketplace.command_handler(part_of=Payment)
class RefundHandler:
    @handle(ProcessRefund)
    def process_refund(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.check_refund(command.amount)

        refund_transaction_id = MANUAL_REFUND_ID
        if payment.is_gateway_settled:
            result = get_gateway().refund(payment.gateway.transaction_id, command.amount, command.reason)
            if not result.success:
                logger.error(
                    "Gateway refused refund",
                    payment_id=str(payment.id),
                    raw_code=result.raw_code,
                    reason=result.failure_reason,
                )
                raise GatewayError(
                    result.failure_reason or "Refund failed at gateway",
                    payment_id=str(payment.id),
                    raw_response=result.raw_message,
                )
            refund_transaction_id = result.refund_transaction_id or refund_transaction_id

        payment.process_refund(command.amount, command.reason, refund_transaction_id)
        repo.add(payment)
        apply_payment_to_order(payment)

        logger.info(
            "Refund processed",
            payment_id=str(payment.id),
            amount=command.amount,
            total_refunded=payment.total_refunded,
            status=payment.status,
        )
        return payment.status
