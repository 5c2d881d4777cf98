import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from marketplace.api import order_router, payment_router, register_error_handlers


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(payment_router)
    app.include_router(order_router)
    register_error_handlers(app)
    return TestClient(app)


@pytest.fixture()
def order_id(client):
    response = client.post(
        "/orders",
        json={
            "seller_id": "seller-001",
            "buyer_id": "buyer-001",
            "items": [{"product_id": "prod-001", "name": "Kitenge fabric", "quantity": 2, "unit_price": 50000}],
            "customer": {"name": "Amina N.", "phone": "0772123456"},
            "delivery_method": "safeboda",
            "delivery_fee": 5000,
            "delivery_address": "Plot 12, Kampala Road",
        },
    )
    assert response.status_code == 201
    return response.json()["order_id"]
