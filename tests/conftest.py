import os
from pathlib import Path

import pytest

# Directory name under tests/marketplace -> marker applied to its tests
_LAYER_MARKERS = {
    "domain": "domain",
    "application": "application",
    "integration": "integration",
    "bdd": "bdd",
}


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Protean config overlay to run the suite against",
    )


def pytest_sessionstart(session):
    """Initialize the marketplace domain before collection.

    Adapters are forced to their in-process variants unless the environment
    already chose otherwise, so no test ever reaches a real payment rail.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ.setdefault("PAYMENT_GATEWAY", "sandbox")
    os.environ.setdefault("NOTIFICATION_SINK", "memory")

    from marketplace.domain import marketplace

    marketplace.init()
    marketplace.domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Mark each test with the layer its directory belongs to."""
    for item in items:
        parts = Path(str(item.fspath)).parts
        layer = next((_LAYER_MARKERS[p] for p in parts if p in _LAYER_MARKERS), None)
        if layer is None:
            continue
        item.add_marker(getattr(pytest.mark, layer))
        if layer == "integration" and not any(m.name == "fast" for m in item.iter_markers()):
            item.add_marker(pytest.mark.slow)
