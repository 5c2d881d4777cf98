"""Application tests for refunds through the gateway and manual cash refunds."""

import pytest
from marketplace.errors import GatewayError, InvalidStateError
from marketplace.order.order import Order
from marketplace.payment import orchestrator
from marketplace.payment.payment import Payment, PaymentStatus
from marketplace.payment.refund import MANUAL_REFUND_ID
from protean import current_domain
from protean.exceptions import ValidationError


def _payment(payment_id):
    return current_domain.repository_for(Payment).get(payment_id)


def _settled(gateway, order_factory, method="mtn_mobile_money"):
    gateway.configure(mode="instant_success")
    order_id = order_factory()
    result = orchestrator.initiate_payment(order_id, method)
    return order_id, result["payment_id"]


class TestGatewayRefunds:
    def test_full_refund(self, gateway, order_factory):
        order_id, payment_id = _settled(gateway, order_factory)
        status = orchestrator.process_refund(payment_id, 107500, "Order cancelled by seller")

        assert status == PaymentStatus.REFUNDED.value
        payment = _payment(payment_id)
        assert payment.total_refunded == 107500.0
        assert payment.refund.refund_transaction_id.startswith("SBX-RF-")
        assert current_domain.repository_for(Order).get(order_id).payment.status == "refunded"

    def test_gateway_called_with_provider_id(self, gateway, order_factory):
        _, payment_id = _settled(gateway, order_factory)
        provider_id = _payment(payment_id).gateway.transaction_id
        orchestrator.process_refund(payment_id, 5000, "Late delivery")

        call = gateway.calls_for("refund")[0]
        assert call["provider_transaction_id"] == provider_id
        assert call["amount"] == 5000

    def test_partial_refunds_accumulate(self, gateway, order_factory):
        _, payment_id = _settled(gateway, order_factory)
        orchestrator.process_refund(payment_id, 5000, "Late delivery")
        status = orchestrator.process_refund(payment_id, 2500, "Packaging damaged")

        assert status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert _payment(payment_id).total_refunded == 7500.0

    def test_refund_above_total_rejected_before_gateway(self, gateway, order_factory):
        _, payment_id = _settled(gateway, order_factory)
        with pytest.raises(ValidationError):
            orchestrator.process_refund(payment_id, 200000, "Too much")
        assert gateway.calls_for("refund") == []

    def test_gateway_refusal_leaves_payment_untouched(self, gateway, order_factory):
        _, payment_id = _settled(gateway, order_factory)
        gateway.configure(refund_should_succeed=False)
        with pytest.raises(GatewayError):
            orchestrator.process_refund(payment_id, 5000, "Late delivery")

        payment = _payment(payment_id)
        assert payment.status == PaymentStatus.SUCCESSFUL.value
        assert payment.total_refunded == 0.0

    def test_pending_payment_cannot_be_refunded(self, gateway, order_factory):
        order_id = order_factory()
        result = orchestrator.initiate_payment(order_id, "mtn_mobile_money")
        with pytest.raises(InvalidStateError):
            orchestrator.process_refund(result["payment_id"], 1000, "Nothing to refund")


class TestManualRefunds:
    def test_cash_refund_is_manual(self, gateway, order_factory):
        order_id = order_factory()
        result = orchestrator.initiate_payment(order_id, "cash_on_delivery")
        orchestrator.confirm_cash_collected(result["payment_id"])
        orchestrator.process_refund(result["payment_id"], 10000, "Returned one item")

        payment = _payment(result["payment_id"])
        assert payment.refund.refund_transaction_id == MANUAL_REFUND_ID
        assert gateway.calls_for("refund") == []


class TestRefundsOnHeldEscrow:
    def test_full_refund_of_held_escrow(self, gateway, order_factory):
        gateway.configure(mode="instant_success")
        order_id = order_factory()
        result = orchestrator.initiate_payment(order_id, "visa", escrow_requested=True)
        orchestrator.process_refund(result["payment_id"], 107500, "Seller never shipped")

        payment = _payment(result["payment_id"])
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.escrow.status == "refunded"
        with pytest.raises(InvalidStateError):
            orchestrator.confirm_delivery(result["payment_id"])
