"""Tests for Payment aggregate creation and structure."""

import re

import pytest
from marketplace.payment.events import PaymentInitiated
from marketplace.payment.payment import (
    EscrowStatus,
    Payment,
    PaymentStatus,
    SplitStatus,
)
from protean.exceptions import ValidationError


def _make_payment(**overrides):
    defaults = {
        "order_id": "ord-001",
        "seller_id": "seller-001",
        "buyer_id": "buyer-001",
        "method": "mtn_mobile_money",
        "subtotal": 100000.0,
        "delivery_fee": 5000.0,
        "delivery_method": "safeboda",
        "payer": {"name": "Amina N.", "phone": "0772123456"},
    }
    defaults.update(overrides)
    return Payment.create(**defaults)


class TestPaymentCreation:
    def test_create_sets_status_to_pending(self):
        payment = _make_payment()
        assert payment.status == PaymentStatus.PENDING.value

    def test_create_computes_amount(self):
        payment = _make_payment()
        assert payment.amount.subtotal == 100000.0
        assert payment.amount.delivery_fee == 5000.0
        assert payment.amount.service_fee == 2500.0
        assert payment.amount.total == 107500.0

    def test_create_derives_method_category(self):
        assert _make_payment(method="airtel_money").method_category == "mobile_money"
        assert _make_payment(method="visa").method_category == "card"
        assert _make_payment(method="paypal").method_category == "digital_wallet"
        assert _make_payment(method="cash_on_delivery").method_category == "cod"

    def test_create_uses_default_currency(self):
        assert _make_payment().currency == "UGX"

    def test_create_assigns_receipt_number(self):
        payment = _make_payment()
        assert re.fullmatch(r"RCP-[0-9A-Z]+-[0-9A-Z]{4}", payment.receipt.number)

    def test_create_assigns_transaction_ref(self):
        payment = _make_payment()
        assert re.fullmatch(r"TX-[0-9A-Z]+-[0-9A-Z]{8}", payment.transaction_ref)
        assert payment.gateway.transaction_ref == payment.transaction_ref

    def test_transaction_refs_are_unique(self):
        refs = {_make_payment().transaction_ref for _ in range(20)}
        assert len(refs) == 20

    def test_create_stores_payer(self):
        payment = _make_payment()
        assert payment.payer.name == "Amina N."
        assert payment.payer.phone == "0772123456"

    def test_create_records_initial_history(self):
        payment = _make_payment()
        assert [entry.status for entry in payment.ordered_history] == ["pending"]

    def test_create_stores_pending_splits(self):
        payment = _make_payment()
        roles = [split.recipient_role for split in payment.ordered_splits]
        assert roles == ["seller", "delivery", "platform"]
        assert all(split.status == SplitStatus.PENDING.value for split in payment.splits)
        assert sum(split.amount for split in payment.splits) == payment.amount.total

    def test_create_raises_initiated_event(self):
        payment = _make_payment()
        assert len(payment._events) == 1
        event = payment._events[0]
        assert isinstance(event, PaymentInitiated)
        assert event.total == 107500.0
        assert event.transaction_ref == payment.transaction_ref

    def test_unknown_method_rejected(self):
        with pytest.raises(ValidationError):
            _make_payment(method="bitcoin")

    def test_total_refunded_starts_at_zero(self):
        assert _make_payment().total_refunded == 0.0


class TestEscrowSetup:
    def test_escrow_disabled_by_default(self):
        payment = _make_payment()
        assert payment.escrow.enabled is False
        assert payment.escrow_status == EscrowStatus.NONE

    def test_escrow_enabled_when_requested(self):
        payment = _make_payment(escrow_requested=True)
        assert payment.escrow.enabled is True
        assert payment.escrow_status == EscrowStatus.NONE

    def test_cash_on_delivery_never_uses_escrow(self):
        payment = _make_payment(method="cash_on_delivery", escrow_requested=True)
        assert payment.escrow.enabled is False
