"""Payment gateway port (abstract interface).

Every rail the marketplace settles through (mobile money, card, wallet) is
reached through this contract. Adapters translate provider wire formats into
the small result types below; the payment state machine never sees raw
provider payloads except as opaque diagnostic codes.

All inbound data (charge responses, verification answers, webhooks) is
treated as untrusted and possibly out of order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

# Normalized provider statuses
GATEWAY_SUCCESSFUL = "successful"
GATEWAY_FAILED = "failed"
GATEWAY_PENDING = "pending"
GATEWAY_PROCESSING = "processing"


@dataclass(frozen=True)
class ChargeRequest:
    """Everything an adapter needs to submit one charge."""

    payment_id: str
    order_id: str
    transaction_ref: str
    method: str
    method_category: str
    amount: float
    currency: str
    payer_name: str | None = None
    payer_phone: str | None = None
    payer_email: str | None = None
    payer_network: str | None = None


@dataclass(frozen=True)
class ChargeResult:
    """Outcome of submitting a charge.

    `status` is one of processing (accepted, awaiting the payer), successful
    (settled immediately) or failed (declined outright).
    """

    accepted: bool
    status: str
    provider: str
    provider_transaction_id: str | None = None
    requires_action: bool = False
    action_type: str | None = None  # mobile_money_approval, redirect
    redirect_url: str | None = None
    message: str | None = None
    raw_code: str | None = None
    raw_message: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    """A provider's current view of a transaction."""

    status: str  # successful, failed, pending
    transaction_ref: str | None = None
    provider_transaction_id: str | None = None
    amount: float | None = None
    currency: str | None = None
    reason: str | None = None
    raw_code: str | None = None
    raw_message: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """A parsed, signature-checked inbound notification."""

    transaction_ref: str
    status: str  # successful, failed, pending
    provider_transaction_id: str | None = None
    amount: float | None = None
    currency: str | None = None
    reason: str | None = None
    raw_code: str | None = None
    raw_message: str | None = None
    provider_data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund request against a settled transaction."""

    success: bool
    refund_transaction_id: str | None = None
    failure_reason: str | None = None
    raw_code: str | None = None
    raw_message: str | None = None


def normalize_provider_status(status: str | None) -> str:
    """Collapse provider-specific status strings to successful/failed/pending."""
    value = (status or "").strip().lower()
    if value in ("successful", "success", "succeeded", "completed"):
        return GATEWAY_SUCCESSFUL
    if value in ("failed", "failure", "cancelled", "canceled", "declined", "error"):
        return GATEWAY_FAILED
    return GATEWAY_PENDING


def webhook_event_from_body(body: dict) -> WebhookEvent:
    """Build a WebhookEvent from a `{"event": ..., "data": {...}}` envelope."""
    data = body.get("data") or {}
    raw_status = data.get("status")
    status = normalize_provider_status(raw_status)
    transaction_ref = data.get("tx_ref") or data.get("txRef") or ""
    provider_id = data.get("id")
    amount = data.get("amount")
    return WebhookEvent(
        transaction_ref=str(transaction_ref),
        status=status,
        provider_transaction_id=str(provider_id) if provider_id is not None else None,
        amount=float(amount) if amount is not None else None,
        currency=data.get("currency"),
        reason=data.get("processor_response") if status == GATEWAY_FAILED else None,
        raw_code=str(raw_status) if raw_status is not None else None,
        raw_message=data.get("processor_response"),
        provider_data=data,
    )


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    provider: str = "unknown"

    @abstractmethod
    def charge(self, request: ChargeRequest) -> ChargeResult:
        """Submit a charge for the payment category of the request.

        Raises GatewayError when the provider cannot be reached or answers
        with a server error; a declined charge is a result, not an error.
        """
        ...

    @abstractmethod
    def verify(self, transaction_ref: str, provider_transaction_id: str | None = None) -> VerificationResult:
        """Ask the provider for the current state of a transaction."""
        ...

    @abstractmethod
    def parse_webhook(self, signature: str | None, payload: bytes | str) -> WebhookEvent:
        """Check the signature, then parse the payload.

        Raises InvalidSignatureError before looking at the payload when the
        signature does not match.
        """
        ...

    @abstractmethod
    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundResult:
        """Refund part or all of a settled transaction."""
        ...
