"""Marketplace Settlement bounded context: Payments, Escrow, Orders and Delivery.

Tracks money (Payment) and goods movement (Order/Delivery) for a multi-vendor
marketplace, keeping both in sync under asynchronous gateway webhooks,
verification polling, admin actions and rider/seller status updates.
"""

import structlog
from protean.domain import Domain

marketplace = Domain(name="marketplace")

logger = structlog.get_logger(__name__)
