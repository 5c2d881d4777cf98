"""Split settlement: who receives which share of a payment.

Computed once when a payment is created and stored on it. Later fee-rule
changes never touch splits that already exist.
"""

from dataclasses import dataclass

from marketplace.payment.fees import FeeBreakdown

# Delivery methods where the seller carries the goods and keeps the fee
SELLER_DELIVERED = ("personal", "pickup")
# Delivery methods paid out to a delivery partner
PARTNER_DELIVERED = ("safeboda", "faras", "shipping")
# Independent rider booked for the order
RIDER_DELIVERED = ("other_rider",)

PLATFORM_RECIPIENT = "platform"
# Delivery companies that are themselves the payee
NAMED_PARTNERS = ("safeboda", "faras")
# Placeholder until the payee is known; filled in later, amounts never change
UNASSIGNED_RECIPIENT = "unassigned"


@dataclass(frozen=True)
class SplitShare:
    recipient_role: str
    recipient_id: str
    amount: float


def compute_splits(
    delivery_method: str | None,
    fees: FeeBreakdown,
    seller_id: str,
    delivery_partner_id: str | None = None,
    rider_id: str | None = None,
) -> list[SplitShare]:
    """Split the fee breakdown between seller, delivery, rider and platform.

    Zero shares are left out. The shares always add up to `fees.total`.
    """
    seller_amount = fees.subtotal
    delivery_amount = 0.0
    rider_amount = 0.0

    if delivery_method in RIDER_DELIVERED:
        rider_amount = fees.delivery_fee
    elif delivery_method in PARTNER_DELIVERED:
        delivery_amount = fees.delivery_fee
    else:
        seller_amount += fees.delivery_fee

    shares = [
        SplitShare("seller", seller_id, seller_amount),
        SplitShare("delivery", delivery_partner_id or _named_partner(delivery_method), delivery_amount),
        SplitShare("rider", rider_id or UNASSIGNED_RECIPIENT, rider_amount),
        SplitShare("platform", PLATFORM_RECIPIENT, fees.service_fee + fees.tax),
    ]
    return [share for share in shares if share.amount > 0]


def _named_partner(delivery_method: str | None) -> str:
    return delivery_method if delivery_method in NAMED_PARTNERS else UNASSIGNED_RECIPIENT
