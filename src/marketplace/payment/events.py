"""Payment domain events: immutable facts about payment state changes.

All events are past tense, versioned, and carry enough data for the
notification handlers without reloading the aggregate.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Payment")
class PaymentInitiated:
    """A payment attempt was created for an order."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    buyer_id = Identifier()
    seller_id = Identifier(required=True)
    method = String(required=True)
    total = Float(required=True)
    currency = String(required=True)
    transaction_ref = String(required=True)
    receipt_number = String(required=True)
    escrow_enabled = Boolean(default=False)
    initiated_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class PaymentProcessing:
    """The gateway accepted the charge; the payer still has to complete it."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    provider = String(required=True)
    provider_transaction_id = String()
    submitted_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class PaymentSucceeded:
    """Money was captured. `escrow_held` tells whether it is held for the buyer."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    buyer_id = Identifier()
    seller_id = Identifier(required=True)
    total = Float(required=True)
    subtotal = Float(required=True)
    currency = String(required=True)
    receipt_number = String(required=True)
    escrow_held = Boolean(default=False)
    provider_transaction_id = String()
    succeeded_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class PaymentFailed:
    """The charge was declined, failed at the gateway, or timed out."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    buyer_id = Identifier()
    reason = String(required=True)
    failed_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class PaymentCancelled:
    """An open payment attempt was cancelled."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    cancelled_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class EscrowReleased:
    """Held funds were released to the seller and other split recipients."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    release_condition = String(required=True)
    released_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class EscrowDisputed:
    """An admin froze held funds pending investigation."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    disputed_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class EscrowDisputeResolved:
    """A dispute was closed and the funds are held again."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    note = String()
    resolved_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class RefundProcessed:
    """Part or all of the payment was refunded to the buyer."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    buyer_id = Identifier()
    amount = Float(required=True)
    total_refunded = Float(required=True)
    currency = String(required=True)
    is_full_refund = Boolean(default=False)
    reason = String(required=True)
    refunded_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class PaymentFlaggedForReconciliation:
    """Gateway and ledger disagree; someone has to look at this payment."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    status = String(required=True)
    note = String(required=True)
    flagged_at = DateTime(required=True)
