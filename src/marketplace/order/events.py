"""Order domain events: immutable facts about order and delivery changes."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Order")
class OrderPlaced:
    """A buyer checked out; prices are snapshotted from this point on."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    seller_id = Identifier(required=True)
    buyer_id = Identifier()
    item_count = Integer(required=True)
    total_price = Float(required=True)
    currency = String(required=True)
    delivery_method = String(required=True)
    placed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    note = String()
    actor = String()
    changed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier()
    seller_id = Identifier(required=True)
    reason = String(required=True)
    actor = String()
    cancelled_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class DeliveryStatusChanged:
    """The delivery moved; carries the derived order status as well."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    buyer_id = Identifier()
    seller_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    order_status = String(required=True)
    location = String()
    note = String()
    changed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class RiderAssigned:
    __version__ = 1

    order_id = Identifier(required=True)
    rider_name = String(required=True)
    rider_phone = String()
    vehicle_type = String()
    assigned_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaymentStatusChanged:
    """The order's payment mirror changed to follow its payment."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    previous_status = String()
    new_status = String(required=True)
    changed_at = DateTime(required=True)
