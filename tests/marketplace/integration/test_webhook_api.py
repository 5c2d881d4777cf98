"""Integration tests for the webhook and checkout callback endpoints."""

import json

from marketplace.gateway.sandbox_adapter import SANDBOX_SIGNATURE


def _start(client, order_id, method="mtn_mobile_money"):
    return client.post("/payments/initiate", json={"order_id": order_id, "method": method}).json()


def _post_webhook(client, transaction_ref, status="successful", signature=SANDBOX_SIGNATURE):
    body = json.dumps({"event": "charge.completed", "data": {"tx_ref": transaction_ref, "status": status, "id": 4242}})
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["verif-hash"] = signature
    return client.post("/payments/webhook", content=body, headers=headers)


class TestWebhookEndpoint:
    def test_success(self, client, gateway, order_id):
        payment = _start(client, order_id)
        response = _post_webhook(client, payment["transaction_ref"])

        assert response.status_code == 200
        assert response.json() == {"status": "received", "effect": "applied"}
        assert client.get(f"/payments/status/{payment['payment_id']}").json()["status"] == "successful"
        assert client.get(f"/orders/{order_id}").json()["payment_status"] == "paid"

    def test_duplicate(self, client, gateway, order_id):
        payment = _start(client, order_id)
        _post_webhook(client, payment["transaction_ref"])
        response = _post_webhook(client, payment["transaction_ref"])
        assert response.json()["effect"] == "duplicate"

    def test_failure_after_success_does_not_regress(self, client, gateway, order_id):
        payment = _start(client, order_id)
        _post_webhook(client, payment["transaction_ref"])
        response = _post_webhook(client, payment["transaction_ref"], status="failed")
        assert response.status_code == 200
        assert response.json()["effect"] == "rejected"
        assert client.get(f"/payments/status/{payment['payment_id']}").json()["status"] == "successful"

    def test_bad_signature(self, client, gateway, order_id):
        payment = _start(client, order_id)
        response = _post_webhook(client, payment["transaction_ref"], signature="forged")
        assert response.status_code == 401
        assert client.get(f"/payments/status/{payment['payment_id']}").json()["status"] == "processing"

    def test_missing_signature(self, client, gateway):
        response = _post_webhook(client, "TX-ANY", signature=None)
        assert response.status_code == 401

    def test_unknown_reference_acknowledged(self, client, gateway):
        response = _post_webhook(client, "TX-NOT-OURS")
        assert response.status_code == 200
        assert response.json() == {"status": "received", "effect": None}


class TestCallbackEndpoint:
    def test_callback_verifies(self, client, gateway, order_id):
        payment = _start(client, order_id, method="visa")
        gateway.set_verification(payment["transaction_ref"], "successful")
        response = client.get(
            "/payments/callback",
            params={"tx_ref": payment["transaction_ref"], "transaction_id": "77", "status": "successful"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "successful"

    def test_reported_status_is_not_trusted(self, client, gateway, order_id):
        payment = _start(client, order_id, method="visa")
        response = client.get(
            "/payments/callback",
            params={"tx_ref": payment["transaction_ref"], "status": "successful"},
        )
        assert response.json()["status"] == "processing"

    def test_unknown_reference(self, client, gateway):
        response = client.get("/payments/callback", params={"tx_ref": "TX-NOPE"})
        assert response.status_code == 404
