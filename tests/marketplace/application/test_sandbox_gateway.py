"""Tests for the sandbox gateway and the gateway factory."""

import json

import pytest
from marketplace.errors import GatewayError, InvalidSignatureError
from marketplace.gateway import get_gateway, reset_gateway, set_gateway
from marketplace.gateway.flutterwave_adapter import FlutterwaveGateway
from marketplace.gateway.port import ChargeRequest, normalize_provider_status
from marketplace.gateway.sandbox_adapter import SANDBOX_SIGNATURE, SandboxGateway


def _request(**overrides):
    defaults = {
        "payment_id": "pay-001",
        "order_id": "ord-001",
        "transaction_ref": "TX-ABC-12345678",
        "method": "mtn_mobile_money",
        "method_category": "mobile_money",
        "amount": 107500.0,
        "currency": "UGX",
    }
    defaults.update(overrides)
    return ChargeRequest(**defaults)


class TestGatewayFactory:
    def test_default_is_sandbox(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY", "sandbox")
        reset_gateway()
        assert isinstance(get_gateway(), SandboxGateway)

    def test_flutterwave_from_env(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY", "flutterwave")
        monkeypatch.setenv("FLUTTERWAVE_SECRET_KEY", "FLWSECK_TEST-123")
        monkeypatch.setenv("FLUTTERWAVE_WEBHOOK_SECRET", "hash-123")
        reset_gateway()
        gateway = get_gateway()
        assert isinstance(gateway, FlutterwaveGateway)
        gateway.close()
        reset_gateway()

    def test_flutterwave_requires_secrets(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY", "flutterwave")
        monkeypatch.delenv("FLUTTERWAVE_SECRET_KEY", raising=False)
        reset_gateway()
        with pytest.raises(RuntimeError):
            get_gateway()
        reset_gateway()

    def test_unknown_gateway(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY", "bitcoin")
        reset_gateway()
        with pytest.raises(ValueError):
            get_gateway()
        reset_gateway()

    def test_set_gateway(self):
        sandbox = SandboxGateway(mode="decline")
        set_gateway(sandbox)
        assert get_gateway() is sandbox

    def test_sandbox_refused_in_production(self, monkeypatch):
        monkeypatch.setenv("PROTEAN_ENV", "production")
        with pytest.raises(RuntimeError):
            SandboxGateway()


class TestSandboxCharges:
    def test_mobile_money_prompt(self):
        result = SandboxGateway().charge(_request())
        assert result.accepted is True
        assert result.status == "processing"
        assert result.action_type == "mobile_money_approval"
        assert result.provider_transaction_id.startswith("SBX-")

    def test_card_redirect(self):
        result = SandboxGateway().charge(_request(method="visa", method_category="card"))
        assert result.action_type == "redirect"
        assert result.redirect_url == "https://sandbox.invalid/checkout/TX-ABC-12345678"
        assert result.provider_transaction_id is None

    def test_decline(self):
        gateway = SandboxGateway(mode="decline")
        gateway.configure(decline_reason="Card expired")
        result = gateway.charge(_request())
        assert result.accepted is False
        assert result.message == "Card expired"

    def test_error(self):
        with pytest.raises(GatewayError) as exc_info:
            SandboxGateway(mode="error").charge(_request())
        assert exc_info.value.payment_id == "pay-001"

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            SandboxGateway().configure(mode="chaos")

    def test_calls_recorded(self):
        gateway = SandboxGateway()
        gateway.charge(_request())
        gateway.verify("TX-ABC-12345678")
        assert [c["method"] for c in gateway.calls] == ["charge", "verify"]


class TestSandboxVerificationAndWebhooks:
    def test_verify_default_pending(self):
        assert SandboxGateway().verify("TX-1").status == "pending"

    def test_verify_override(self):
        gateway = SandboxGateway()
        gateway.set_verification("TX-1", "failed")
        result = gateway.verify("TX-1")
        assert result.status == "failed"
        assert result.reason == "Insufficient funds"
        assert gateway.verify("TX-2").status == "pending"

    def test_webhook_parsed(self):
        body = json.dumps({"event": "charge.completed", "data": {"tx_ref": "TX-1", "status": "successful", "id": 42}})
        event = SandboxGateway().parse_webhook(SANDBOX_SIGNATURE, body)
        assert event.transaction_ref == "TX-1"
        assert event.status == "successful"
        assert event.provider_transaction_id == "42"

    def test_webhook_signature_checked_first(self):
        with pytest.raises(InvalidSignatureError):
            SandboxGateway().parse_webhook("wrong", "not even json")

    def test_refund_toggle(self):
        gateway = SandboxGateway()
        assert gateway.refund("SBX-1", 100, "test").success is True
        gateway.configure(refund_should_succeed=False)
        assert gateway.refund("SBX-1", 100, "test").success is False


class TestStatusNormalization:
    @pytest.mark.parametrize(
        "raw, normalized",
        [
            ("successful", "successful"),
            ("SUCCESS", "successful"),
            ("completed", "successful"),
            ("failed", "failed"),
            ("cancelled", "failed"),
            ("pending", "pending"),
            ("new", "pending"),
            (None, "pending"),
        ],
    )
    def test_normalize(self, raw, normalized):
        assert normalize_provider_status(raw) == normalized
