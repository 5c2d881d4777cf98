"""Payment aggregate (CQRS): one attempt to pay for an order.

Payment is the source of truth for money state. It is created pending, moves
through the gateway lifecycle, optionally holds funds in escrow until delivery,
and can be refunded in one or more steps. Payments are never deleted.

State Machine:
    PENDING → PROCESSING → {SUCCESSFUL | HELD_IN_ESCROW | FAILED}
    PENDING → {SUCCESSFUL | HELD_IN_ESCROW}          (cash collected, instant settlement)
    {PENDING, PROCESSING} → {FAILED | CANCELLED}
    HELD_IN_ESCROW → RELEASED
    {SUCCESSFUL, HELD_IN_ESCROW, RELEASED, PARTIALLY_REFUNDED} → {REFUNDED | PARTIALLY_REFUNDED}
    PARTIALLY_REFUNDED → RELEASED                     (escrow still held)

Escrow is an overlay on the status: escrow.status moves
NONE → HELD → {RELEASED | REFUNDED | DISPUTED}, DISPUTED → HELD.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

import structlog
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from marketplace.config import get_settings
from marketplace.domain import marketplace
from marketplace.errors import InvalidStateError
from marketplace.payment.events import (
    EscrowDisputed,
    EscrowDisputeResolved,
    EscrowReleased,
    PaymentCancelled,
    PaymentFailed,
    PaymentFlaggedForReconciliation,
    PaymentInitiated,
    PaymentProcessing,
    PaymentSucceeded,
    RefundProcessed,
)
from marketplace.payment.fees import calculate_fees
from marketplace.payment.methods import MethodCategory, PaymentMethod, category_for
from marketplace.payment.splits import UNASSIGNED_RECIPIENT, compute_splits
from marketplace.utils.references import generate_receipt_number, generate_transaction_ref

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    HELD_IN_ESCROW = "held_in_escrow"
    RELEASED = "released"


class EscrowStatus(Enum):
    NONE = "none"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class ReleaseCondition(Enum):
    DELIVERY_CONFIRMED = "delivery_confirmed"
    TIME_ELAPSED = "time_elapsed"
    MANUAL = "manual"
    NONE = "none"


class SplitRole(Enum):
    SELLER = "seller"
    DELIVERY = "delivery"
    PLATFORM = "platform"
    RIDER = "rider"


class SplitStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class OutcomeEffect(Enum):
    """What applying a gateway outcome did to the payment."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    FLAGGED = "flagged"
    IGNORED = "ignored"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.SUCCESSFUL,
        PaymentStatus.HELD_IN_ESCROW,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {
        PaymentStatus.SUCCESSFUL,
        PaymentStatus.HELD_IN_ESCROW,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.SUCCESSFUL: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.HELD_IN_ESCROW: {
        PaymentStatus.RELEASED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    },
    PaymentStatus.RELEASED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.RELEASED,
    },
    PaymentStatus.FAILED: set(),  # terminal
    PaymentStatus.CANCELLED: set(),  # terminal
    PaymentStatus.REFUNDED: set(),  # terminal
}

OPEN_STATUSES = {PaymentStatus.PENDING, PaymentStatus.PROCESSING}
SETTLED_STATUSES = {
    PaymentStatus.SUCCESSFUL,
    PaymentStatus.HELD_IN_ESCROW,
    PaymentStatus.RELEASED,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED,
}
REFUNDABLE_STATUSES = {
    PaymentStatus.SUCCESSFUL,
    PaymentStatus.HELD_IN_ESCROW,
    PaymentStatus.RELEASED,
    PaymentStatus.PARTIALLY_REFUNDED,
}

# Refunds reduce still-pending splits in this order
_REFUND_SPLIT_ORDER = (SplitRole.SELLER, SplitRole.DELIVERY, SplitRole.RIDER, SplitRole.PLATFORM)

_BUYER_MESSAGES = {
    PaymentStatus.PENDING: "Awaiting payment",
    PaymentStatus.PROCESSING: "Payment is still processing",
    PaymentStatus.SUCCESSFUL: "Payment successful",
    PaymentStatus.HELD_IN_ESCROW: "Payment received and held securely until delivery",
    PaymentStatus.RELEASED: "Payment completed and released to the seller",
    PaymentStatus.CANCELLED: "Payment was cancelled",
    PaymentStatus.REFUNDED: "Payment refunded",
    PaymentStatus.PARTIALLY_REFUNDED: "Payment partially refunded",
}


def _money(value: float | None) -> float:
    return round(float(value or 0.0), 2)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Payment")
class Amount:
    """Fee breakdown. Built only by the fee calculator; total is the sum of the parts."""

    subtotal = Float(default=0.0)
    delivery_fee = Float(default=0.0)
    service_fee = Float(default=0.0)
    tax = Float(default=0.0)
    total = Float(default=0.0)


@marketplace.value_object(part_of="Payment")
class EscrowInfo:
    enabled = Boolean(default=False)
    status = String(max_length=20, default=EscrowStatus.NONE.value)
    held_at = DateTime()
    released_at = DateTime()
    release_condition = String(max_length=30, default=ReleaseCondition.NONE.value)
    auto_release_deadline = DateTime()
    dispute_reason = String(max_length=500)


@marketplace.value_object(part_of="Payment")
class GatewayInfo:
    """Provider-side identifiers and the last raw response, for diagnosis."""

    provider = String(max_length=50)
    transaction_id = String(max_length=255)
    transaction_ref = String(max_length=100)
    raw_response_code = String(max_length=100)
    raw_response_message = String(max_length=1000)
    redirect_url = String(max_length=1000)


@marketplace.value_object(part_of="Payment")
class PayerContact:
    name = String(max_length=200)
    phone = String(max_length=30)
    email = String(max_length=254)
    network = String(max_length=20)


@marketplace.value_object(part_of="Payment")
class RefundInfo:
    """Cumulative refund record; successive partial refunds add up here."""

    amount = Float(default=0.0)
    reason = String(max_length=500)
    refunded_at = DateTime()
    refund_transaction_id = String(max_length=255)


@marketplace.value_object(part_of="Payment")
class Receipt:
    number = String(max_length=50, required=True)
    url = String(max_length=1000)
    sent_at = DateTime()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Payment")
class Split:
    """One recipient's share of the payment."""

    recipient_role = String(max_length=20, choices=SplitRole, required=True)
    recipient_id = String(max_length=255, required=True)
    amount = Float(required=True, min_value=0.0)
    status = String(max_length=20, choices=SplitStatus, default=SplitStatus.PENDING.value)
    paid_at = DateTime()
    sequence = Integer(required=True)


@marketplace.entity(part_of="Payment")
class PaymentStatusEntry:
    """Append-only audit trail entry."""

    status = String(max_length=50, required=True)
    note = String(max_length=500)
    timestamp = DateTime(required=True)
    sequence = Integer(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Payment:
    order_id = Identifier(required=True)
    buyer_id = Identifier()
    seller_id = Identifier(required=True)
    business_id = Identifier()
    method = String(max_length=50, choices=PaymentMethod, required=True)
    method_category = String(max_length=20, choices=MethodCategory, required=True)
    amount = ValueObject(Amount)
    currency = String(max_length=3, default="UGX")
    status = String(max_length=50, choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    escrow = ValueObject(EscrowInfo)
    splits = HasMany(Split)
    transaction_ref = String(max_length=100, required=True)
    gateway = ValueObject(GatewayInfo)
    payer = ValueObject(PayerContact)
    refund = ValueObject(RefundInfo)
    receipt = ValueObject(Receipt)
    status_history = HasMany(PaymentStatusEntry)
    initiated_at = DateTime()
    submitted_at = DateTime()
    completed_at = DateTime()
    failed_at = DateTime()
    failure_reason = String(max_length=500)
    last_verified_at = DateTime()
    flagged_for_reconciliation = Boolean(default=False)
    reconciliation_note = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_id: str,
        seller_id: str,
        method: str,
        subtotal: float,
        delivery_fee: float = 0.0,
        order_tax: float = 0.0,
        delivery_method: str | None = None,
        buyer_id: str | None = None,
        business_id: str | None = None,
        payer: dict | None = None,
        escrow_requested: bool = False,
        currency: str | None = None,
        delivery_partner_id: str | None = None,
        rider_id: str | None = None,
    ):
        """Create a pending payment with fees, splits, receipt number and transaction ref.

        Cash on delivery never uses escrow: the money only exists once the
        rider has collected it.
        """
        settings = get_settings()
        category = category_for(method)
        fees = calculate_fees(subtotal, delivery_fee, settings, order_tax=order_tax or 0.0)
        escrow_enabled = bool(escrow_requested) and category != MethodCategory.COD
        transaction_ref = generate_transaction_ref()
        payer = payer or {}
        now = datetime.now(UTC)

        payment = cls(
            order_id=order_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            business_id=business_id,
            method=method,
            method_category=category.value,
            amount=Amount(**fees.to_dict()),
            currency=currency or settings.default_currency,
            status=PaymentStatus.PENDING.value,
            escrow=EscrowInfo(
                enabled=escrow_enabled,
                status=EscrowStatus.NONE.value,
                release_condition=ReleaseCondition.NONE.value,
            ),
            transaction_ref=transaction_ref,
            gateway=GatewayInfo(transaction_ref=transaction_ref),
            payer=PayerContact(
                name=payer.get("name"),
                phone=payer.get("phone"),
                email=payer.get("email"),
                network=payer.get("network"),
            ),
            refund=RefundInfo(amount=0.0),
            receipt=Receipt(number=generate_receipt_number()),
            initiated_at=now,
            created_at=now,
            updated_at=now,
        )

        shares = compute_splits(
            delivery_method,
            fees,
            seller_id=str(seller_id),
            delivery_partner_id=delivery_partner_id,
            rider_id=rider_id,
        )
        for sequence, share in enumerate(shares, start=1):
            payment.add_splits(
                Split(
                    recipient_role=share.recipient_role,
                    recipient_id=share.recipient_id,
                    amount=share.amount,
                    status=SplitStatus.PENDING.value,
                    sequence=sequence,
                )
            )
        payment._append_history(PaymentStatus.PENDING, "Payment initiated", now)

        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                order_id=str(order_id),
                buyer_id=str(buyer_id) if buyer_id else None,
                seller_id=str(seller_id),
                method=method,
                total=fees.total,
                currency=payment.currency,
                transaction_ref=transaction_ref,
                receipt_number=payment.receipt.number,
                escrow_enabled=escrow_enabled,
                initiated_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_cash_on_delivery(self) -> bool:
        return self.method_category == MethodCategory.COD.value

    @property
    def is_gateway_settled(self) -> bool:
        """True when the money moved through a gateway and refunds must go back through it."""
        return not self.is_cash_on_delivery and bool(self.gateway and self.gateway.transaction_id)

    @property
    def escrow_status(self) -> EscrowStatus:
        if self.escrow is None:
            return EscrowStatus.NONE
        return EscrowStatus(self.escrow.status)

    @property
    def total_refunded(self) -> float:
        return _money(self.refund.amount if self.refund else 0.0)

    @property
    def ordered_history(self) -> list:
        return sorted(self.status_history or [], key=lambda entry: entry.sequence)

    @property
    def ordered_splits(self) -> list:
        return sorted(self.splits or [], key=lambda split: split.sequence)

    def paid_split_total(self) -> float:
        return _money(sum(s.amount for s in (self.splits or []) if s.status == SplitStatus.PAID.value))

    def buyer_message(self) -> str:
        """Status line for buyers. Never contains raw gateway codes."""
        status = self.current_status
        if status == PaymentStatus.FAILED:
            return f"failed: {self.failure_reason or 'payment could not be completed'}"
        return _BUYER_MESSAGES[status]

    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = self.current_status
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidStateError(
                {"status": [f"Cannot transition payment from {current.value} to {target_status.value}"]}
            )

    def _append_history(self, status: PaymentStatus, note: str, at: datetime) -> None:
        self.add_status_history(
            PaymentStatusEntry(
                status=status.value,
                note=note,
                timestamp=at,
                sequence=len(self.status_history or []) + 1,
            )
        )

    def _transition(self, target_status: PaymentStatus, note: str, at: datetime) -> None:
        self._assert_can_transition(target_status)
        self.status = target_status.value
        self.updated_at = at
        self._append_history(target_status, note, at)

    def _gateway_with(self, **changes) -> GatewayInfo:
        current = self.gateway
        values = {
            "provider": current.provider if current else None,
            "transaction_id": current.transaction_id if current else None,
            "transaction_ref": current.transaction_ref if current else self.transaction_ref,
            "raw_response_code": current.raw_response_code if current else None,
            "raw_response_message": current.raw_response_message if current else None,
            "redirect_url": current.redirect_url if current else None,
        }
        values.update({key: value for key, value in changes.items() if value is not None})
        return GatewayInfo(**values)

    def _escrow_with(self, **changes) -> EscrowInfo:
        current = self.escrow
        values = {
            "enabled": current.enabled,
            "status": current.status,
            "held_at": current.held_at,
            "released_at": current.released_at,
            "release_condition": current.release_condition,
            "auto_release_deadline": current.auto_release_deadline,
            "dispute_reason": current.dispute_reason,
        }
        values.update(changes)
        EscrowStatus(values["status"])
        ReleaseCondition(values["release_condition"] or ReleaseCondition.NONE.value)
        return EscrowInfo(**values)

    def _mark_pending_splits_paid(self, at: datetime) -> None:
        for split in self.splits or []:
            if split.status == SplitStatus.PENDING.value and split.amount > 0:
                split.status = SplitStatus.PAID.value
                split.paid_at = at

    def _reduce_pending_splits(self, amount: float) -> None:
        remaining = _money(amount)
        for role in _REFUND_SPLIT_ORDER:
            for split in self.ordered_splits:
                if remaining <= 0:
                    return
                if split.recipient_role != role.value or split.status != SplitStatus.PENDING.value:
                    continue
                cut = min(_money(split.amount), remaining)
                split.amount = _money(split.amount - cut)
                remaining = _money(remaining - cut)

    def assign_split_recipient(self, role: str, recipient_id: str) -> bool:
        """Name the payee of an unassigned share. Amounts and statuses are untouched."""
        changed = False
        for split in self.splits or []:
            if split.recipient_role == role and split.recipient_id == UNASSIGNED_RECIPIENT:
                split.recipient_id = recipient_id
                changed = True
        if changed:
            self.updated_at = datetime.now(UTC)
        return changed

    # -------------------------------------------------------------------
    # Charge submission
    # -------------------------------------------------------------------
    def mark_processing(
        self,
        provider: str,
        provider_transaction_id: str | None = None,
        redirect_url: str | None = None,
        raw_code: str | None = None,
        raw_message: str | None = None,
    ) -> None:
        """The gateway accepted the charge and is waiting on the payer."""
        now = datetime.now(UTC)
        self._transition(PaymentStatus.PROCESSING, f"Charge submitted to {provider}", now)
        self.submitted_at = now
        self.gateway = self._gateway_with(
            provider=provider,
            transaction_id=provider_transaction_id,
            redirect_url=redirect_url,
            raw_response_code=raw_code,
            raw_response_message=raw_message,
        )
        self.raise_(
            PaymentProcessing(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                provider=provider,
                provider_transaction_id=provider_transaction_id,
                submitted_at=now,
            )
        )

    def record_charge_declined(
        self,
        provider: str,
        reason: str,
        raw_code: str | None = None,
        raw_message: str | None = None,
    ) -> None:
        """The gateway refused the charge outright."""
        self.gateway = self._gateway_with(provider=provider, raw_response_code=raw_code, raw_response_message=raw_message)
        self.fail(reason or "Charge declined")

    # -------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------
    def _settle(self, note: str, at: datetime, provider_transaction_id: str | None = None) -> None:
        if self.escrow and self.escrow.enabled:
            self._transition(PaymentStatus.HELD_IN_ESCROW, note, at)
            release_days = get_settings().escrow_release_days
            self.escrow = self._escrow_with(
                status=EscrowStatus.HELD.value,
                held_at=at,
                auto_release_deadline=at + timedelta(days=release_days),
            )
        else:
            self._transition(PaymentStatus.SUCCESSFUL, note, at)
            self._mark_pending_splits_paid(at)

        self.completed_at = at
        self.raise_(
            PaymentSucceeded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                buyer_id=str(self.buyer_id) if self.buyer_id else None,
                seller_id=str(self.seller_id),
                total=self.amount.total,
                subtotal=self.amount.subtotal,
                currency=self.currency,
                receipt_number=self.receipt.number,
                escrow_held=self.current_status == PaymentStatus.HELD_IN_ESCROW,
                provider_transaction_id=provider_transaction_id,
                succeeded_at=at,
            )
        )

    def _charged_mismatch(self, amount: float | None, currency: str | None) -> str | None:
        """Describe how a reported charge differs from this payment, if it does."""
        if amount is not None and _money(amount) != _money(self.amount.total):
            return f"{_money(amount)} instead of {_money(self.amount.total)}"
        if currency and self.currency and currency.upper() != self.currency.upper():
            return f"currency {currency.upper()} instead of {self.currency.upper()}"
        return None

    def apply_gateway_outcome(
        self,
        status: str,
        provider_transaction_id: str | None = None,
        reason: str | None = None,
        raw_code: str | None = None,
        raw_message: str | None = None,
        provider: str | None = None,
        source: str = "webhook",
        amount: float | None = None,
        currency: str | None = None,
    ) -> OutcomeEffect:
        """Apply a gateway verdict idempotently.

        - success on an open payment settles it (successful or held in escrow)
        - success for a different amount or currency flags it instead
        - success on a settled payment is a duplicate and changes nothing
        - success on a failed/cancelled payment flags it for reconciliation
        - failure on an open payment fails it
        - failure on a settled payment is rejected and never regresses it
        - a pending verdict is ignored
        """
        current = self.current_status
        now = datetime.now(UTC)

        if status == "successful":
            if current in OPEN_STATUSES:
                mismatch = self._charged_mismatch(amount, currency)
                if mismatch:
                    self.flag_for_reconciliation(f"Gateway reported success ({source}) for {mismatch}")
                    return OutcomeEffect.FLAGGED
                self.gateway = self._gateway_with(
                    provider=provider,
                    transaction_id=provider_transaction_id,
                    raw_response_code=raw_code,
                    raw_response_message=raw_message,
                )
                self._settle(f"Payment confirmed by gateway ({source})", now, provider_transaction_id)
                return OutcomeEffect.APPLIED
            if current in SETTLED_STATUSES:
                return OutcomeEffect.DUPLICATE
            self.flag_for_reconciliation(
                f"Gateway reported success ({source}) after payment was {current.value}",
            )
            return OutcomeEffect.FLAGGED

        if status == "failed":
            if current in OPEN_STATUSES:
                self.gateway = self._gateway_with(
                    provider=provider,
                    transaction_id=provider_transaction_id,
                    raw_response_code=raw_code,
                    raw_response_message=raw_message,
                )
                self.fail(reason or "Payment failed at gateway")
                return OutcomeEffect.APPLIED
            if current in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
                return OutcomeEffect.DUPLICATE
            return OutcomeEffect.REJECTED

        return OutcomeEffect.IGNORED

    def confirm_cash_collected(self) -> None:
        """Cash on delivery: the rider collected the money."""
        if not self.is_cash_on_delivery:
            raise InvalidStateError({"method": ["Only cash on delivery payments can be confirmed as collected"]})
        if self.current_status != PaymentStatus.PENDING:
            raise InvalidStateError({"status": [f"Cash can only be confirmed on pending payments, not {self.status}"]})
        now = datetime.now(UTC)
        self.gateway = self._gateway_with(provider="cash")
        self._settle("Cash collected on delivery", now)

    def fail(self, reason: str) -> None:
        now = datetime.now(UTC)
        self._transition(PaymentStatus.FAILED, reason, now)
        self.failed_at = now
        self.failure_reason = reason
        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                buyer_id=str(self.buyer_id) if self.buyer_id else None,
                reason=reason,
                failed_at=now,
            )
        )

    def cancel(self, reason: str) -> None:
        if self.current_status not in OPEN_STATUSES:
            raise InvalidStateError({"status": [f"Cannot cancel a payment that is {self.status}"]})
        now = datetime.now(UTC)
        self._transition(PaymentStatus.CANCELLED, reason, now)
        self.raise_(
            PaymentCancelled(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                cancelled_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Verification bookkeeping
    # -------------------------------------------------------------------
    def is_verification_due(self, now: datetime, min_interval_seconds: int) -> bool:
        last = _as_utc(self.last_verified_at)
        return last is None or (now - last).total_seconds() >= min_interval_seconds

    def record_verification(self, at: datetime) -> None:
        self.last_verified_at = at

    def processing_timed_out(self, now: datetime, timeout_minutes: int) -> bool:
        started = _as_utc(self.submitted_at or self.initiated_at)
        return started is not None and now - started >= timedelta(minutes=timeout_minutes)

    def flag_for_reconciliation(self, note: str) -> None:
        """Mark the payment for manual review. Repeated flags keep the first note."""
        if self.flagged_for_reconciliation:
            return
        now = datetime.now(UTC)
        self.flagged_for_reconciliation = True
        self.reconciliation_note = note
        self.updated_at = now
        self.raise_(
            PaymentFlaggedForReconciliation(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                status=self.status,
                note=note,
                flagged_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Escrow
    # -------------------------------------------------------------------
    def release_escrow(self, condition: str) -> None:
        """Release held funds: escrow released, pending splits paid."""
        try:
            condition = ReleaseCondition(condition)
        except ValueError:
            raise ValidationError({"reason": [f"Unknown release condition: {condition}"]}) from None
        if condition == ReleaseCondition.NONE:
            raise ValidationError({"reason": ["A release condition is required"]})
        if self.escrow_status != EscrowStatus.HELD:
            raise InvalidStateError(
                {"escrow": [f"Escrow can only be released when held, it is {self.escrow_status.value}"]}
            )

        now = datetime.now(UTC)
        self._transition(PaymentStatus.RELEASED, f"Escrow released ({condition.value})", now)
        self.escrow = self._escrow_with(
            status=EscrowStatus.RELEASED.value,
            released_at=now,
            release_condition=condition.value,
        )
        self._mark_pending_splits_paid(now)
        self.raise_(
            EscrowReleased(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                seller_id=str(self.seller_id),
                amount=_money(self.amount.total - self.total_refunded),
                currency=self.currency,
                release_condition=condition.value,
                released_at=now,
            )
        )

    def is_escrow_due(self, now: datetime) -> bool:
        deadline = _as_utc(self.escrow.auto_release_deadline) if self.escrow else None
        return self.escrow_status == EscrowStatus.HELD and deadline is not None and deadline <= now

    def dispute_escrow(self, reason: str) -> None:
        if self.escrow_status != EscrowStatus.HELD:
            raise InvalidStateError({"escrow": [f"Only held escrow can be disputed, it is {self.escrow_status.value}"]})
        now = datetime.now(UTC)
        self.escrow = self._escrow_with(status=EscrowStatus.DISPUTED.value, dispute_reason=reason)
        self.updated_at = now
        self._append_history(self.current_status, f"Escrow disputed: {reason}", now)
        self.raise_(
            EscrowDisputed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                disputed_at=now,
            )
        )

    def resolve_dispute(self, note: str | None = None) -> None:
        if self.escrow_status != EscrowStatus.DISPUTED:
            raise InvalidStateError({"escrow": ["Escrow is not under dispute"]})
        now = datetime.now(UTC)
        self.escrow = self._escrow_with(status=EscrowStatus.HELD.value)
        self.updated_at = now
        self._append_history(self.current_status, f"Dispute resolved: {note or 'no note'}", now)
        self.raise_(
            EscrowDisputeResolved(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                note=note,
                resolved_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def check_refund(self, amount: float) -> float:
        """Validate a refund request and return the new cumulative total."""
        if amount is None or amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be greater than zero"]})
        if self.current_status not in REFUNDABLE_STATUSES:
            raise InvalidStateError({"status": [f"Cannot refund a payment that is {self.status}"]})
        cumulative = _money(self.total_refunded + amount)
        if cumulative > _money(self.amount.total):
            raise ValidationError(
                {
                    "amount": [
                        f"Refund total ({cumulative}) would exceed payment amount ({_money(self.amount.total)})"
                    ]
                }
            )
        return cumulative

    def process_refund(self, amount: float, reason: str, refund_transaction_id: str | None = None) -> None:
        cumulative = self.check_refund(amount)
        is_full = cumulative >= _money(self.amount.total)
        target = PaymentStatus.REFUNDED if is_full else PaymentStatus.PARTIALLY_REFUNDED
        now = datetime.now(UTC)

        self._transition(target, f"Refund of {_money(amount)} {self.currency}: {reason}", now)
        self.refund = RefundInfo(
            amount=cumulative,
            reason=reason,
            refunded_at=now,
            refund_transaction_id=refund_transaction_id,
        )

        if self.escrow_status in (EscrowStatus.HELD, EscrowStatus.DISPUTED):
            self._reduce_pending_splits(amount)
            if is_full:
                self.escrow = self._escrow_with(status=EscrowStatus.REFUNDED.value)

        self.raise_(
            RefundProcessed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                buyer_id=str(self.buyer_id) if self.buyer_id else None,
                amount=_money(amount),
                total_refunded=cumulative,
                currency=self.currency,
                is_full_refund=is_full,
                reason=reason,
                refunded_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------
    def record_receipt_sent(self, url: str) -> None:
        now = datetime.now(UTC)
        self.receipt = Receipt(number=self.receipt.number, url=url, sent_at=now)
        self.updated_at = now
