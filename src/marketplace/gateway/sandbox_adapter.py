"""Configurable sandbox gateway for development and testing.

Simulates a payment rail without any external calls. Behavior is chosen at
runtime through configure():

- accept: charges are accepted and wait for a webhook or poll (processing)
- decline: charges are declined outright (failed)
- instant_success: charges settle immediately, like a rail with no approval step
- error: the rail is unreachable and every charge raises GatewayError

The sandbox is a separate adapter rather than a branch inside the production
adapter, and it refuses to start when PROTEAN_ENV=production.
"""

import json
from uuid import uuid4

from marketplace.config import is_production
from marketplace.errors import GatewayError, InvalidSignatureError
from marketplace.gateway.port import (
    GATEWAY_FAILED,
    GATEWAY_PENDING,
    GATEWAY_PROCESSING,
    GATEWAY_SUCCESSFUL,
    ChargeRequest,
    ChargeResult,
    PaymentGateway,
    RefundResult,
    VerificationResult,
    WebhookEvent,
    webhook_event_from_body,
)

SANDBOX_MODES = ("accept", "decline", "instant_success", "error")
SANDBOX_SIGNATURE = "sandbox-signature"


class SandboxGateway(PaymentGateway):
    """Configurable sandbox payment gateway."""

    provider = "sandbox"

    def __init__(self, mode: str = "accept") -> None:
        if is_production():
            raise RuntimeError("SandboxGateway cannot be used when PROTEAN_ENV=production")
        self.mode = mode
        self.decline_reason: str = "Insufficient funds"
        self.verify_status: str = GATEWAY_PENDING
        self.refund_should_succeed: bool = True
        self.webhook_signature: str = SANDBOX_SIGNATURE
        self._verification_overrides: dict[str, tuple[str, float | None, str | None]] = {}
        self.calls: list[dict] = []

    def configure(
        self,
        mode: str | None = None,
        decline_reason: str | None = None,
        verify_status: str | None = None,
        refund_should_succeed: bool | None = None,
    ) -> None:
        """Configure gateway behavior at runtime."""
        if mode is not None:
            if mode not in SANDBOX_MODES:
                raise ValueError(f"Unknown sandbox mode: {mode}")
            self.mode = mode
        if decline_reason is not None:
            self.decline_reason = decline_reason
        if verify_status is not None:
            self.verify_status = verify_status
        if refund_should_succeed is not None:
            self.refund_should_succeed = refund_should_succeed

    def set_verification(
        self,
        transaction_ref: str,
        status: str,
        amount: float | None = None,
        currency: str | None = None,
    ) -> None:
        """Make verify() report `status` (and optionally a charged amount) for one transaction ref."""
        self._verification_overrides[transaction_ref] = (status, amount, currency)

    def calls_for(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    def charge(self, request: ChargeRequest) -> ChargeResult:
        self.calls.append(
            {
                "method": "charge",
                "transaction_ref": request.transaction_ref,
                "payment_method": request.method,
                "category": request.method_category,
                "amount": request.amount,
                "currency": request.currency,
            }
        )

        if self.mode == "error":
            raise GatewayError("Sandbox gateway is unavailable", payment_id=request.payment_id)

        if self.mode == "decline":
            return ChargeResult(
                accepted=False,
                status=GATEWAY_FAILED,
                provider=self.provider,
                message=self.decline_reason,
                raw_code="DECLINED",
                raw_message=self.decline_reason,
            )

        if self.mode == "instant_success":
            return ChargeResult(
                accepted=True,
                status=GATEWAY_SUCCESSFUL,
                provider=self.provider,
                provider_transaction_id=f"SIM-{uuid4().hex[:12]}",
                message="Simulated payment (sandbox)",
                raw_code="00",
                raw_message="Approved by sandbox",
            )

        if request.method_category == "mobile_money":
            return ChargeResult(
                accepted=True,
                status=GATEWAY_PROCESSING,
                provider=self.provider,
                provider_transaction_id=f"SBX-{uuid4().hex[:12]}",
                requires_action=True,
                action_type="mobile_money_approval",
                message="Please approve the payment on your mobile phone.",
                raw_code="pending",
            )
        return ChargeResult(
            accepted=True,
            status=GATEWAY_PROCESSING,
            provider=self.provider,
            requires_action=True,
            action_type="redirect",
            redirect_url=f"https://sandbox.invalid/checkout/{request.transaction_ref}",
            message="Redirecting to payment page...",
            raw_code="pending",
        )

    def verify(self, transaction_ref: str, provider_transaction_id: str | None = None) -> VerificationResult:
        self.calls.append(
            {
                "method": "verify",
                "transaction_ref": transaction_ref,
                "provider_transaction_id": provider_transaction_id,
            }
        )
        status, amount, currency = self._verification_overrides.get(transaction_ref, (self.verify_status, None, None))
        return VerificationResult(
            status=status,
            transaction_ref=transaction_ref,
            provider_transaction_id=provider_transaction_id or f"SBX-{transaction_ref}",
            amount=amount,
            currency=currency,
            reason=self.decline_reason if status == GATEWAY_FAILED else None,
            raw_code=status,
        )

    def parse_webhook(self, signature: str | None, payload: bytes | str) -> WebhookEvent:
        if signature != self.webhook_signature:
            raise InvalidSignatureError("Invalid webhook signature")
        body = json.loads(payload)
        return webhook_event_from_body(body)

    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundResult:
        self.calls.append(
            {
                "method": "refund",
                "provider_transaction_id": provider_transaction_id,
                "amount": amount,
                "reason": reason,
            }
        )
        if self.refund_should_succeed:
            return RefundResult(success=True, refund_transaction_id=f"SBX-RF-{uuid4().hex[:10]}")
        return RefundResult(success=False, failure_reason="Refund rejected by sandbox", raw_code="REFUND_FAILED")
