"""Application tests for verification polling and stale-payment reconciliation."""

from datetime import UTC, datetime, timedelta

from marketplace.order.order import Order
from marketplace.payment import orchestrator
from marketplace.payment.payment import Payment, PaymentStatus
from marketplace.payment.verification import VERIFICATION_TIMEOUT
from protean import current_domain


def _payment(payment_id):
    return current_domain.repository_for(Payment).get(payment_id)


def _start(order_factory, method="mtn_mobile_money"):
    order_id = order_factory()
    result = orchestrator.initiate_payment(order_id, method)
    return order_id, result["payment_id"], result["transaction_ref"]


class TestVerification:
    def test_verification_settles(self, gateway, order_factory):
        order_id, payment_id, ref = _start(order_factory)
        gateway.set_verification(ref, "successful")

        result = orchestrator.verify_payment(payment_id)
        assert result["checked_gateway"] is True
        assert result["status"] == PaymentStatus.SUCCESSFUL.value
        assert result["message"] == "Payment successful"
        assert current_domain.repository_for(Order).get(order_id).payment.status == "paid"

    def test_verification_failure(self, gateway, order_factory):
        _, payment_id, ref = _start(order_factory)
        gateway.set_verification(ref, "failed")
        result = orchestrator.verify_payment(payment_id)
        assert result["status"] == PaymentStatus.FAILED.value
        assert result["message"].startswith("failed: ")

    def test_still_pending(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        result = orchestrator.verify_payment(payment_id)
        assert result["status"] == PaymentStatus.PROCESSING.value
        assert result["message"] == "Payment is still processing"
        assert _payment(payment_id).last_verified_at is not None

    def test_uses_provider_transaction_id(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        provider_id = _payment(payment_id).gateway.transaction_id
        orchestrator.verify_payment(payment_id)
        assert gateway.calls_for("verify")[0]["provider_transaction_id"] == provider_id

    def test_settled_payment_not_checked(self, gateway, order_factory):
        gateway.configure(mode="instant_success")
        _, payment_id, _ = _start(order_factory)
        result = orchestrator.verify_payment(payment_id)
        assert result["checked_gateway"] is False
        assert gateway.calls_for("verify") == []

    def test_pending_cash_payment_not_checked(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory, method="cash_on_delivery")
        result = orchestrator.verify_payment(payment_id)
        assert result["checked_gateway"] is False
        assert result["status"] == PaymentStatus.PENDING.value

    def test_verified_success_for_wrong_amount_is_flagged(self, gateway, order_factory):
        order_id, payment_id, ref = _start(order_factory)
        gateway.set_verification(ref, "successful", amount=1.0, currency="UGX")

        result = orchestrator.verify_payment(payment_id)

        assert result["status"] == PaymentStatus.PROCESSING.value
        payment = _payment(payment_id)
        assert payment.flagged_for_reconciliation is True
        assert current_domain.repository_for(Order).get(order_id).payment.status == "pending"

    def test_verified_success_for_full_amount_settles(self, gateway, order_factory):
        _, payment_id, ref = _start(order_factory)
        gateway.set_verification(ref, "successful", amount=107500.0, currency="UGX")
        assert orchestrator.verify_payment(payment_id)["status"] == PaymentStatus.SUCCESSFUL.value


class TestVerificationThrottle:
    def test_repeat_poll_is_throttled(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        orchestrator.verify_payment(payment_id)
        second = orchestrator.verify_payment(payment_id)

        assert second["checked_gateway"] is False
        assert len(gateway.calls_for("verify")) == 1

    def test_no_throttle_when_interval_is_zero(self, gateway, settings, order_factory):
        settings(verify_min_interval_seconds=0)
        _, payment_id, _ = _start(order_factory)
        orchestrator.verify_payment(payment_id)
        orchestrator.verify_payment(payment_id)
        assert len(gateway.calls_for("verify")) == 2


class TestVerificationTimeout:
    def test_pending_past_timeout_fails(self, gateway, settings, order_factory):
        settings(processing_timeout_minutes=0)
        _, payment_id, _ = _start(order_factory)
        result = orchestrator.verify_payment(payment_id)

        assert result["status"] == PaymentStatus.FAILED.value
        assert _payment(payment_id).failure_reason == VERIFICATION_TIMEOUT

    def test_pending_within_timeout_stays_processing(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        result = orchestrator.verify_payment(payment_id)
        assert result["status"] == PaymentStatus.PROCESSING.value


class TestStalePayments:
    def test_stale_processing_payment_flagged(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        flagged = orchestrator.flag_stale_payments(now=datetime.now(UTC) + timedelta(minutes=31))

        assert flagged == [payment_id]
        payment = _payment(payment_id)
        assert payment.flagged_for_reconciliation is True
        assert payment.status == PaymentStatus.PROCESSING.value
        assert "30 minutes" in payment.reconciliation_note

    def test_recent_payment_not_flagged(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        assert orchestrator.flag_stale_payments() == []
        assert _payment(payment_id).flagged_for_reconciliation is False

    def test_flagged_only_once(self, gateway, order_factory):
        _start(order_factory)
        later = datetime.now(UTC) + timedelta(minutes=31)
        orchestrator.flag_stale_payments(now=later)
        assert orchestrator.flag_stale_payments(now=later) == []

    def test_flagged_payments_listed(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        orchestrator.flag_stale_payments(now=datetime.now(UTC) + timedelta(minutes=31))
        flagged = current_domain.repository_for(Payment).find_flagged()
        assert [str(p.id) for p in flagged] == [payment_id]

    def test_admin_flag(self, gateway, order_factory):
        _, payment_id, _ = _start(order_factory)
        orchestrator.flag_for_reconciliation(payment_id, "Buyer says they were charged twice")
        payment = _payment(payment_id)
        assert payment.flagged_for_reconciliation is True
        assert payment.reconciliation_note == "Buyer says they were charged twice"
