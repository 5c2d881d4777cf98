"""Error taxonomy for the marketplace domain.

`ValidationError` is Protean's own and covers malformed input. The remaining
errors describe state, gateway and concurrency failures; the API layer maps
each of them to an HTTP status.
"""

from protean.exceptions import ValidationError


class InvalidStateError(ValidationError):
    """A transition was attempted from a state that does not permit it."""


class UnmatchedReferenceError(Exception):
    """A webhook or poll referenced a transaction ref we never issued."""

    def __init__(self, transaction_ref: str) -> None:
        super().__init__(f"No payment found for transaction ref {transaction_ref}")
        self.transaction_ref = transaction_ref


class GatewayError(Exception):
    """An outbound call to the payment rail failed or timed out."""

    def __init__(self, message: str, payment_id: str | None = None, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.payment_id = payment_id
        self.raw_response = raw_response


class InvalidSignatureError(Exception):
    """An inbound webhook failed signature verification."""


class ConcurrencyConflictError(Exception):
    """Another request is mutating the same aggregate; retry later."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"Concurrent update in progress for {kind} {identifier}")
        self.kind = kind
        self.identifier = identifier


__all__ = [
    "ConcurrencyConflictError",
    "GatewayError",
    "InvalidSignatureError",
    "InvalidStateError",
    "UnmatchedReferenceError",
    "ValidationError",
]
