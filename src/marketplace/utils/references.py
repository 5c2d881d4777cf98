"""Human-readable identifiers: receipt numbers, order numbers, transaction refs.

All share one shape, `<PREFIX>-<base36 millisecond timestamp>-<4 random base36>`,
uppercased.
"""

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _random_suffix(length: int = 4) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def _reference(prefix: str, suffix_length: int = 4) -> str:
    timestamp = to_base36(int(time.time() * 1000))
    return f"{prefix}-{timestamp}-{_random_suffix(suffix_length)}"


def generate_receipt_number() -> str:
    return _reference("RCP")


def generate_order_number() -> str:
    return _reference("ORD")


def generate_transaction_ref() -> str:
    """Correlation key sent to the gateway and echoed back by webhooks."""
    return _reference("TX", suffix_length=8)
