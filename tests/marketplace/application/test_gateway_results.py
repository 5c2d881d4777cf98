"""Application tests for webhooks and redirect callbacks."""

import json

import pytest
from marketplace.errors import InvalidSignatureError
from marketplace.gateway.sandbox_adapter import SANDBOX_SIGNATURE
from marketplace.order.order import Order
from marketplace.payment import orchestrator
from marketplace.payment.payment import Payment, PaymentStatus
from protean import current_domain


def _payment(payment_id):
    return current_domain.repository_for(Payment).get(payment_id)


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _webhook(transaction_ref, status="successful", provider_id=7001, reason=None, amount=107500, currency="UGX"):
    data = {"tx_ref": transaction_ref, "status": status, "id": provider_id, "amount": amount, "currency": currency}
    if reason:
        data["processor_response"] = reason
    return json.dumps({"event": "charge.completed", "data": data})


def _processing_payment(order_factory, method="mtn_mobile_money", **kwargs):
    order_id = order_factory()
    result = orchestrator.initiate_payment(order_id, method, **kwargs)
    return order_id, result["payment_id"], result["transaction_ref"]


class TestWebhookSuccess:
    def test_success_settles_payment(self, gateway, order_factory):
        order_id, payment_id, ref = _processing_payment(order_factory)
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))

        assert effect == "applied"
        payment = _payment(payment_id)
        assert payment.status == PaymentStatus.SUCCESSFUL.value
        assert payment.gateway.transaction_id == "7001"
        assert payment.completed_at is not None

    def test_success_pays_splits(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        payment = _payment(payment_id)
        assert all(split.status == "paid" for split in payment.splits)

    def test_success_marks_order_paid(self, gateway, order_factory):
        order_id, payment_id, ref = _processing_payment(order_factory)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        order = _order(order_id)
        assert order.payment.status == "paid"
        assert order.payment.transaction_id == "7001"
        assert order.payment.paid_at is not None

    def test_success_with_escrow_holds(self, gateway, order_factory):
        order_id, payment_id, ref = _processing_payment(order_factory, method="visa", escrow_requested=True)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        assert _payment(payment_id).status == PaymentStatus.HELD_IN_ESCROW.value
        assert _order(order_id).payment.status == "paid"

    def test_duplicate_success_changes_nothing(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        history_length = len(_payment(payment_id).status_history)

        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        assert effect == "duplicate"
        assert len(_payment(payment_id).status_history) == history_length


class TestWebhookFailure:
    def test_failure_fails_payment(self, gateway, order_factory):
        order_id, payment_id, ref = _processing_payment(order_factory)
        effect = orchestrator.process_webhook(
            SANDBOX_SIGNATURE,
            _webhook(ref, status="failed", reason="Transaction declined by subscriber"),
        )
        assert effect == "applied"
        payment = _payment(payment_id)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_reason == "Transaction declined by subscriber"
        assert _order(order_id).payment.status == "failed"

    def test_failure_without_reason_uses_default(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, status="failed"))
        assert _payment(payment_id).failure_reason == "Payment failed at gateway"

    def test_failure_after_success_is_rejected(self, gateway, order_factory):
        order_id, payment_id, ref = _processing_payment(order_factory)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, status="failed"))

        assert effect == "rejected"
        assert _payment(payment_id).status == PaymentStatus.SUCCESSFUL.value
        assert _order(order_id).payment.status == "paid"

    def test_success_after_failure_is_flagged(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, status="failed"))
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))

        assert effect == "flagged"
        payment = _payment(payment_id)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.flagged_for_reconciliation is True


class TestWebhookEdgeCases:
    def test_bad_signature_rejected(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        with pytest.raises(InvalidSignatureError):
            orchestrator.process_webhook("forged", _webhook(ref))
        assert _payment(payment_id).status == PaymentStatus.PROCESSING.value

    def test_missing_signature_rejected(self, gateway):
        with pytest.raises(InvalidSignatureError):
            orchestrator.process_webhook(None, _webhook("TX-ANY"))

    def test_unknown_reference_is_swallowed(self, gateway):
        assert orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook("TX-UNKNOWN-REF")) is None

    def test_pending_webhook_ignored(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, status="pending"))
        assert effect == "ignored"
        assert _payment(payment_id).status == PaymentStatus.PROCESSING.value

    def test_provider_status_aliases_normalized(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, status="SUCCEEDED"))
        assert _payment(payment_id).status == PaymentStatus.SUCCESSFUL.value

    def test_success_on_cancelled_payment_is_flagged(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        orchestrator.cancel_payment(payment_id, "Buyer abandoned checkout")
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        assert effect == "flagged"
        assert _payment(payment_id).status == PaymentStatus.CANCELLED.value


class TestChargedAmountMismatch:
    def test_underpaid_success_is_flagged(self, gateway, order_factory):
        order_id, payment_id, ref = _processing_payment(order_factory)
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, amount=1.0))

        assert effect == "flagged"
        payment = _payment(payment_id)
        assert payment.status == PaymentStatus.PROCESSING.value
        assert payment.flagged_for_reconciliation is True
        assert "1.0 instead of 107500.0" in payment.reconciliation_note
        assert not any(split.status == "paid" for split in payment.splits)
        assert _order(order_id).payment.status == "pending"

    def test_other_currency_is_flagged(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, currency="USD"))

        assert effect == "flagged"
        assert _payment(payment_id).status == PaymentStatus.PROCESSING.value
        assert "currency USD" in _payment(payment_id).reconciliation_note

    def test_matching_amount_in_lower_case_currency_settles(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory)
        effect = orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref, currency="ugx"))
        assert effect == "applied"
        assert _payment(payment_id).status == PaymentStatus.SUCCESSFUL.value


class TestCallback:
    def test_callback_asks_gateway(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory, method="visa")
        gateway.set_verification(ref, "successful")

        payment = orchestrator.process_callback(ref, "9001")
        assert payment.status == PaymentStatus.SUCCESSFUL.value
        assert payment.gateway.transaction_id == "9001"
        assert gateway.calls_for("verify")[0]["transaction_ref"] == ref

    def test_callback_pending_leaves_processing(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory, method="visa")
        payment = orchestrator.process_callback(ref)
        assert payment.status == PaymentStatus.PROCESSING.value

    def test_callback_failure(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory, method="visa")
        gateway.set_verification(ref, "failed")
        payment = orchestrator.process_callback(ref)
        assert payment.status == PaymentStatus.FAILED.value

    def test_callback_after_settlement_skips_gateway(self, gateway, order_factory):
        _, payment_id, ref = _processing_payment(order_factory, method="visa")
        orchestrator.process_webhook(SANDBOX_SIGNATURE, _webhook(ref))
        payment = orchestrator.process_callback(ref)
        assert payment.status == PaymentStatus.SUCCESSFUL.value
        assert gateway.calls_for("verify") == []

    def test_callback_unknown_reference(self, gateway):
        assert orchestrator.process_callback("TX-NOPE") is None
