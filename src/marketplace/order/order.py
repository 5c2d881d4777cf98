"""Order aggregate (CQRS): one checkout with one seller.

Items and prices are snapshotted when the order is placed and never re-read
from the catalog. Delivery status is driven by sellers and riders and derives
the order status in one direction only (delivery drives order). The payment
block is a read-optimized mirror of the authoritative Payment, written only
by the payment synchronizer.

Order status:
    PENDING → CONFIRMED → PROCESSING → SHIPPED → DELIVERED → COMPLETED
    {PENDING, CONFIRMED} → CANCELLED → REFUNDED
    REFUNDED is final.

Delivery status:
    PENDING → ASSIGNED → PICKED_UP → IN_TRANSIT → ARRIVED → DELIVERED
    any → FAILED | RETURNED
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from marketplace.domain import marketplace
from marketplace.errors import InvalidStateError
from marketplace.order.events import (
    DeliveryStatusChanged,
    OrderCancelled,
    OrderPaymentStatusChanged,
    OrderPlaced,
    OrderStatusChanged,
    RiderAssigned,
)
from marketplace.utils.references import generate_order_number


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DeliveryStatus(Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


class DeliveryMethod(Enum):
    SAFEBODA = "safeboda"
    FARAS = "faras"
    PERSONAL = "personal"
    PICKUP = "pickup"
    OTHER_RIDER = "other_rider"
    SHIPPING = "shipping"


class OrderPaymentMethod(Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    PAYPAL = "paypal"
    OTHER = "other"


class OrderPaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Delivery status → order status it derives
_DERIVED_ORDER_STATUS = {
    DeliveryStatus.PICKED_UP: OrderStatus.PROCESSING,
    DeliveryStatus.IN_TRANSIT: OrderStatus.SHIPPED,
    DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
}

# Forward progress of an order; derivation never moves backwards along it
_PROGRESS = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
]

_FINAL_ORDER_STATUSES = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}
_CANCELLABLE_STATUSES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}


def _check_payment_mirror(method: str, status: str) -> None:
    """Value-object fields carry plain strings, so their vocabulary is checked here."""
    try:
        OrderPaymentMethod(method)
    except ValueError:
        raise ValidationError({"payment_method": [f"Unknown payment method: {method}"]}) from None
    try:
        OrderPaymentStatus(status)
    except ValueError:
        raise ValidationError({"payment_status": [f"Unknown payment status: {status}"]}) from None


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Order")
class CustomerContact:
    """Contact details captured at checkout; guests have no buyer id."""

    name = String(max_length=200)
    phone = String(max_length=30)
    email = String(max_length=254)


@marketplace.value_object(part_of="Order")
class DeliveryInfo:
    method = String(max_length=20, required=True)
    status = String(max_length=20, default=DeliveryStatus.PENDING.value)
    fee = Float(default=0.0)
    address = String(max_length=500)
    instructions = String(max_length=1000)
    assigned_at = DateTime()
    picked_up_at = DateTime()
    actual_delivery_time = DateTime()


@marketplace.value_object(part_of="Order")
class RiderInfo:
    rider_id = String(max_length=255)
    name = String(max_length=200)
    phone = String(max_length=30)
    vehicle_type = String(max_length=50)
    vehicle_plate = String(max_length=30)


@marketplace.value_object(part_of="Order")
class OrderPricing:
    """Locked at checkout: total_price = subtotal + shipping_cost + tax - discount."""

    subtotal = Float(default=0.0)
    shipping_cost = Float(default=0.0)
    tax = Float(default=0.0)
    discount = Float(default=0.0)
    total_price = Float(default=0.0)
    currency = String(max_length=3, default="UGX")


@marketplace.value_object(part_of="Order")
class OrderPayment:
    """Mirror of the latest payment outcome for this order."""

    method = String(max_length=20, default=OrderPaymentMethod.CASH.value)
    status = String(max_length=20, default=OrderPaymentStatus.PENDING.value)
    payment_id = String(max_length=255)
    transaction_id = String(max_length=255)
    paid_at = DateTime()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Order")
class OrderItem:
    """Snapshot of a product line at checkout time."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    image = String(max_length=1000)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    line_total = Float(required=True, min_value=0.0)


@marketplace.entity(part_of="Order")
class TrackingEntry:
    status = String(max_length=20, required=True)
    location = String(max_length=255)
    note = String(max_length=500)
    timestamp = DateTime(required=True)
    sequence = Integer(required=True)


@marketplace.entity(part_of="Order")
class OrderStatusEntry:
    status = String(max_length=20, required=True)
    note = String(max_length=500)
    actor = String(max_length=100)
    timestamp = DateTime(required=True)
    sequence = Integer(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Order:
    order_number = String(max_length=50, required=True)
    business_id = Identifier()
    seller_id = Identifier(required=True)
    buyer_id = Identifier()
    customer = ValueObject(CustomerContact)
    items = HasMany(OrderItem)
    delivery = ValueObject(DeliveryInfo)
    rider = ValueObject(RiderInfo)
    tracking_history = HasMany(TrackingEntry)
    pricing = ValueObject(OrderPricing)
    status = String(max_length=20, choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment = ValueObject(OrderPayment)
    status_history = HasMany(OrderStatusEntry)
    cancellation_reason = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        seller_id: str,
        items_data: list[dict],
        delivery_method: str,
        delivery_fee: float = 0.0,
        buyer_id: str | None = None,
        business_id: str | None = None,
        customer: dict | None = None,
        delivery_address: str | None = None,
        instructions: str | None = None,
        tax: float = 0.0,
        discount: float = 0.0,
        currency: str = "UGX",
        payment_method: str = OrderPaymentMethod.CASH.value,
    ):
        """Place an order from checkout data.

        Args:
            items_data: List of dicts with product_id, name, image, quantity,
                        unit_price, as read from the catalog at checkout.
        """
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})
        try:
            DeliveryMethod(delivery_method)
        except ValueError:
            raise ValidationError({"delivery_method": [f"Unknown delivery method: {delivery_method}"]}) from None
        _check_payment_mirror(payment_method, OrderPaymentStatus.PENDING.value)
        if (delivery_fee or 0) < 0 or (tax or 0) < 0 or (discount or 0) < 0:
            raise ValidationError({"pricing": ["Fees, tax and discount must not be negative"]})

        now = datetime.now(UTC)
        customer = customer or {}
        items = [
            OrderItem(
                product_id=item["product_id"],
                name=item["name"],
                image=item.get("image"),
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                line_total=round(item["quantity"] * item["unit_price"], 2),
            )
            for item in items_data
        ]
        subtotal = round(sum(item.line_total for item in items), 2)
        total_price = round(subtotal + delivery_fee + tax - discount, 2)
        if total_price < 0:
            raise ValidationError({"discount": ["Discount cannot exceed the order value"]})

        order = cls(
            order_number=generate_order_number(),
            business_id=business_id,
            seller_id=seller_id,
            buyer_id=buyer_id,
            customer=CustomerContact(
                name=customer.get("name"),
                phone=customer.get("phone"),
                email=customer.get("email"),
            ),
            delivery=DeliveryInfo(
                method=delivery_method,
                status=DeliveryStatus.PENDING.value,
                fee=delivery_fee,
                address=delivery_address,
                instructions=instructions,
            ),
            pricing=OrderPricing(
                subtotal=subtotal,
                shipping_cost=delivery_fee,
                tax=tax,
                discount=discount,
                total_price=total_price,
                currency=currency,
            ),
            status=OrderStatus.PENDING.value,
            payment=OrderPayment(method=payment_method, status=OrderPaymentStatus.PENDING.value),
            created_at=now,
            updated_at=now,
        )
        for item in items:
            order.add_items(item)
        order._append_status_history(OrderStatus.PENDING, "Order placed", "buyer", now)
        order._append_tracking(DeliveryStatus.PENDING, None, "Order placed", now)

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                seller_id=str(seller_id),
                buyer_id=str(buyer_id) if buyer_id else None,
                item_count=len(items),
                total_price=total_price,
                currency=currency,
                delivery_method=delivery_method,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def delivery_status(self) -> DeliveryStatus:
        return DeliveryStatus(self.delivery.status)

    @property
    def ordered_status_history(self) -> list:
        return sorted(self.status_history or [], key=lambda entry: entry.sequence)

    @property
    def ordered_tracking(self) -> list:
        return sorted(self.tracking_history or [], key=lambda entry: entry.sequence)

    @property
    def payable_subtotal(self) -> float:
        """Goods value the buyer pays for, after discount."""
        return round(self.pricing.subtotal - (self.pricing.discount or 0.0), 2)

    def _append_status_history(self, status: OrderStatus, note: str | None, actor: str | None, at: datetime) -> None:
        self.add_status_history(
            OrderStatusEntry(
                status=status.value,
                note=note,
                actor=actor,
                timestamp=at,
                sequence=len(self.status_history or []) + 1,
            )
        )

    def _append_tracking(self, status: DeliveryStatus, location: str | None, note: str | None, at: datetime) -> None:
        self.add_tracking_history(
            TrackingEntry(
                status=status.value,
                location=location,
                note=note,
                timestamp=at,
                sequence=len(self.tracking_history or []) + 1,
            )
        )

    def _delivery_with(self, **changes) -> DeliveryInfo:
        current = self.delivery
        values = {
            "method": current.method,
            "status": current.status,
            "fee": current.fee,
            "address": current.address,
            "instructions": current.instructions,
            "assigned_at": current.assigned_at,
            "picked_up_at": current.picked_up_at,
            "actual_delivery_time": current.actual_delivery_time,
        }
        values.update(changes)
        return DeliveryInfo(**values)

    def _set_status(self, new_status: OrderStatus, note: str | None, actor: str | None, at: datetime) -> None:
        previous = self.status
        self.status = new_status.value
        self.updated_at = at
        self._append_status_history(new_status, note, actor, at)
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                previous_status=previous,
                new_status=new_status.value,
                note=note,
                actor=actor,
                changed_at=at,
            )
        )

    # -------------------------------------------------------------------
    # Order status
    # -------------------------------------------------------------------
    def update_status(self, new_status: str, note: str | None = None, actor: str | None = None) -> None:
        """Set the order status explicitly (seller or admin)."""
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationError({"status": [f"Unknown order status: {new_status}"]}) from None

        current = self.current_status
        if current == OrderStatus.REFUNDED:
            raise InvalidStateError({"status": ["A refunded order cannot change status"]})
        if current == OrderStatus.CANCELLED and target != OrderStatus.REFUNDED:
            raise InvalidStateError({"status": ["A cancelled order can only move to refunded"]})
        if target == OrderStatus.DELIVERED and self.delivery_status != DeliveryStatus.DELIVERED:
            raise InvalidStateError({"status": ["An order can only be delivered once its delivery is delivered"]})
        if target == OrderStatus.CANCELLED:
            self.cancel(note or "Cancelled", actor)
            return

        self._set_status(target, note, actor, datetime.now(UTC))

    def cancel(self, reason: str, actor: str | None = None) -> None:
        if self.current_status not in _CANCELLABLE_STATUSES:
            raise InvalidStateError({"status": [f"Order cannot be cancelled once it is {self.status}"]})
        now = datetime.now(UTC)
        self.cancellation_reason = reason
        self._set_status(OrderStatus.CANCELLED, reason, actor, now)
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                buyer_id=str(self.buyer_id) if self.buyer_id else None,
                seller_id=str(self.seller_id),
                reason=reason,
                actor=actor,
                cancelled_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------
    def update_delivery_status(self, new_status: str, location: str | None = None, note: str | None = None) -> None:
        """Record delivery progress and derive the order status from it."""
        try:
            target = DeliveryStatus(new_status)
        except ValueError:
            raise ValidationError({"status": [f"Unknown delivery status: {new_status}"]}) from None

        current = self.current_status
        if current in _FINAL_ORDER_STATUSES:
            raise InvalidStateError({"status": [f"Delivery cannot change on a {current.value} order"]})
        if current in (OrderStatus.DELIVERED, OrderStatus.COMPLETED) and target != DeliveryStatus.DELIVERED:
            raise InvalidStateError({"delivery": ["Delivery is already complete for this order"]})

        now = datetime.now(UTC)
        previous = self.delivery.status
        changes = {"status": target.value}
        if target == DeliveryStatus.PICKED_UP:
            changes["picked_up_at"] = now
        if target == DeliveryStatus.DELIVERED:
            changes["actual_delivery_time"] = now
        self.delivery = self._delivery_with(**changes)
        self._append_tracking(target, location, note, now)
        self.updated_at = now

        derived = _DERIVED_ORDER_STATUS.get(target)
        if derived is not None and current in _PROGRESS and _PROGRESS.index(derived) > _PROGRESS.index(current):
            self._set_status(derived, note or f"Delivery {target.value}", "delivery", now)

        self.raise_(
            DeliveryStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                buyer_id=str(self.buyer_id) if self.buyer_id else None,
                seller_id=str(self.seller_id),
                previous_status=previous,
                new_status=target.value,
                order_status=self.status,
                location=location,
                note=note,
                changed_at=now,
            )
        )

    def assign_rider(
        self,
        name: str,
        phone: str | None = None,
        vehicle_type: str | None = None,
        vehicle_plate: str | None = None,
        rider_id: str | None = None,
    ) -> None:
        if self.current_status in _FINAL_ORDER_STATUSES:
            raise InvalidStateError({"status": [f"Cannot assign a rider to a {self.status} order"]})
        if self.delivery_status not in (DeliveryStatus.PENDING, DeliveryStatus.ASSIGNED):
            raise InvalidStateError({"delivery": [f"Rider cannot be assigned once delivery is {self.delivery.status}"]})

        now = datetime.now(UTC)
        self.rider = RiderInfo(
            rider_id=rider_id,
            name=name,
            phone=phone,
            vehicle_type=vehicle_type,
            vehicle_plate=vehicle_plate,
        )
        self.delivery = self._delivery_with(status=DeliveryStatus.ASSIGNED.value, assigned_at=now)
        self._append_tracking(DeliveryStatus.ASSIGNED, None, f"Rider {name} assigned", now)
        self.updated_at = now
        self.raise_(
            RiderAssigned(
                order_id=str(self.id),
                rider_name=name,
                rider_phone=phone,
                vehicle_type=vehicle_type,
                assigned_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Payment mirror
    # -------------------------------------------------------------------
    def record_payment_mirror(
        self,
        payment_id: str,
        method: str,
        status: str,
        transaction_id: str | None = None,
        paid_at: datetime | None = None,
    ) -> bool:
        """Overwrite the payment mirror. Returns False when nothing changed."""
        _check_payment_mirror(method, status)
        current = self.payment
        unchanged = (
            current is not None
            and current.payment_id == payment_id
            and current.status == status
            and current.method == method
            and current.transaction_id == transaction_id
        )
        if unchanged:
            return False

        now = datetime.now(UTC)
        previous_status = current.status if current else None
        keep_paid_at = current.paid_at if current and current.payment_id == payment_id else None
        self.payment = OrderPayment(
            method=method,
            status=status,
            payment_id=payment_id,
            transaction_id=transaction_id,
            paid_at=paid_at or keep_paid_at,
        )
        self.updated_at = now
        if previous_status != status:
            self.raise_(
                OrderPaymentStatusChanged(
                    order_id=str(self.id),
                    payment_id=payment_id,
                    previous_status=previous_status,
                    new_status=status,
                    changed_at=now,
                )
            )
        return True
