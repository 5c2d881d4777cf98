"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- SandboxGateway for development and testing (PAYMENT_GATEWAY=sandbox, default)
- FlutterwaveGateway for production (PAYMENT_GATEWAY=flutterwave)
"""

import os

from marketplace.gateway.flutterwave_adapter import FlutterwaveGateway
from marketplace.gateway.port import PaymentGateway
from marketplace.gateway.sandbox_adapter import SandboxGateway

_current_gateway: PaymentGateway | None = None


def _build_gateway() -> PaymentGateway:
    name = os.environ.get("PAYMENT_GATEWAY", "sandbox").lower()
    if name == "flutterwave":
        return FlutterwaveGateway.from_env()
    if name == "sandbox":
        return SandboxGateway()
    raise ValueError(f"Unknown payment gateway: {name}")


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, built from PAYMENT_GATEWAY on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _build_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the environment-selected gateway."""
    global _current_gateway
    _current_gateway = None
