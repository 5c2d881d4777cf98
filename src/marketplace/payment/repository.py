"""Custom queries over stored payments.

Queries used by the sweeps lift Protean's default page size with
`limit(None)`; a page of disputed or not-yet-due payments must never hide
the ones that are due.
"""

from marketplace.domain import marketplace
from marketplace.payment.payment import Payment, PaymentStatus


@marketplace.repository(part_of=Payment)
class PaymentRepository:
    def _all(self, **filters) -> list[Payment]:
        return self._dao.query.filter(**filters).limit(None).all().items

    def find_by_transaction_ref(self, transaction_ref: str) -> Payment | None:
        """The payment a webhook or poll refers to, if we issued that ref."""
        if not transaction_ref:
            return None
        items = self._dao.query.filter(transaction_ref=transaction_ref).all().items
        return items[0] if items else None

    def find_by_order(self, order_id: str) -> list[Payment]:
        """Every attempt for an order, oldest first."""
        return sorted(self._all(order_id=str(order_id)), key=lambda p: p.created_at)

    def find_by_status(self, *statuses: PaymentStatus) -> list[Payment]:
        payments = []
        for status in statuses:
            payments.extend(self._all(status=status.value))
        return payments

    def find_with_escrow_held(self) -> list[Payment]:
        """Payments whose funds are still held (possibly after a partial refund)."""
        candidates = self.find_by_status(PaymentStatus.HELD_IN_ESCROW, PaymentStatus.PARTIALLY_REFUNDED)
        return [p for p in candidates if p.escrow and p.escrow.status == "held"]

    def find_processing_unflagged(self) -> list[Payment]:
        """Processing payments not yet handed to reconciliation."""
        return self._all(status=PaymentStatus.PROCESSING.value, flagged_for_reconciliation=False)

    def find_flagged(self) -> list[Payment]:
        return self._all(flagged_for_reconciliation=True)
