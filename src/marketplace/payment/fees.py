"""Fee calculator.

A pure function of subtotal and delivery fee. Every amount is rounded half-up
to the configured precision (whole currency units by default) so that the
same inputs always produce the same total, on any retry.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from protean.exceptions import ValidationError

from marketplace.config import Settings, get_settings


@dataclass(frozen=True)
class FeeBreakdown:
    subtotal: float
    delivery_fee: float
    service_fee: float
    tax: float
    total: float

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "service_fee": self.service_fee,
            "tax": self.tax,
            "total": self.total,
        }


def round_amount(value: float | Decimal, precision: int = 0) -> Decimal:
    """Round half-up to `precision` decimal places."""
    quantum = Decimal(1).scaleb(-precision)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


def calculate_fees(
    subtotal: float,
    delivery_fee: float = 0.0,
    settings: Settings | None = None,
    order_tax: float = 0.0,
) -> FeeBreakdown:
    """Compute service fee, tax and total for a checkout.

    `order_tax` is tax already charged on the order itself and is added to the
    rate-based tax.
    """
    settings = settings or get_settings()
    if subtotal is None or subtotal < 0:
        raise ValidationError({"subtotal": ["Subtotal must be zero or positive"]})
    if delivery_fee is None or delivery_fee < 0:
        raise ValidationError({"delivery_fee": ["Delivery fee must be zero or positive"]})
    if order_tax is None or order_tax < 0:
        raise ValidationError({"tax": ["Tax must be zero or positive"]})

    precision = settings.fee_precision
    base = round_amount(subtotal, precision)
    delivery = round_amount(delivery_fee, precision)
    service_fee = round_amount(base * Decimal(str(settings.service_fee_rate)), precision)
    tax = round_amount(base * Decimal(str(settings.tax_rate)), precision) + round_amount(order_tax, precision)
    total = base + delivery + service_fee + tax

    return FeeBreakdown(
        subtotal=float(base),
        delivery_fee=float(delivery),
        service_fee=float(service_fee),
        tax=float(tax),
        total=float(total),
    )
