import os

import pytest


@pytest.fixture(scope="session")
def _marketplace_domain(request):
    """Initialize the marketplace domain once per session."""
    os.environ["PROTEAN_ENV"] = request.config.option.env

    from marketplace.domain import marketplace

    marketplace.init()
    return marketplace


@pytest.fixture(scope="session", autouse=True)
def setup_db(_marketplace_domain):
    from marketplace.utils.db import drop_db, setup_db

    setup_db(_marketplace_domain)

    yield

    drop_db(_marketplace_domain)


@pytest.fixture(autouse=True)
def run_around_tests(_marketplace_domain):
    """Push domain context before each test, cleanup after."""
    ctx = _marketplace_domain.domain_context()
    ctx.push()

    yield

    from marketplace.config import reset_settings
    from marketplace.gateway import reset_gateway
    from marketplace.notifications import reset_sink
    from protean import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()
    ctx.pop()

    reset_gateway()
    reset_sink()
    reset_settings()


@pytest.fixture()
def gateway():
    """A fresh sandbox gateway installed as the active gateway."""
    from marketplace.gateway import set_gateway
    from marketplace.gateway.sandbox_adapter import SandboxGateway

    sandbox = SandboxGateway()
    set_gateway(sandbox)
    return sandbox


@pytest.fixture()
def sink():
    """A fresh in-memory notification sink installed as the active sink."""
    from marketplace.notifications import set_sink
    from marketplace.notifications.memory_sink import InMemoryNotificationSink

    memory = InMemoryNotificationSink()
    set_sink(memory)
    return memory


@pytest.fixture()
def settings():
    """Install explicit settings; call the returned function with overrides."""
    from marketplace.config import Settings, configure_settings

    def _configure(**overrides):
        configured = Settings(**overrides)
        configure_settings(configured)
        return configured

    return _configure


@pytest.fixture()
def order_factory():
    """Place orders through the orchestrator, returning the order id."""
    import json

    from marketplace.payment import orchestrator

    def _place(**overrides):
        data = {
            "seller_id": "seller-001",
            "buyer_id": "buyer-001",
            "items": [
                {"product_id": "prod-001", "name": "Kitenge fabric", "quantity": 2, "unit_price": 50000.0},
            ],
            "customer": {"name": "Amina N.", "phone": "0772123456", "email": "amina@example.com"},
            "delivery_method": "safeboda",
            "delivery_fee": 5000.0,
            "delivery_address": "Plot 12, Kampala Road",
        }
        data.update(overrides)
        data["items"] = json.dumps(data["items"])
        data["customer"] = json.dumps(data["customer"])
        return orchestrator.place_order(**data)

    return _place
