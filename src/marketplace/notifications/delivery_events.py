"""Tells the buyer where their order is."""

from protean.utils.mixins import handle

from marketplace.domain import marketplace
from marketplace.notifications.dispatch import DELIVERY_STATUS_CHANGED, send_notice
from marketplace.order.events import DeliveryStatusChanged
from marketplace.order.order import Order


@marketplace.event_handler(part_of=Order)
class DeliveryNotificationsHandler:
    @handle(DeliveryStatusChanged)
    def on_delivery_status_changed(self, event: DeliveryStatusChanged) -> None:
        payload = {
            "order_id": str(event.order_id),
            "order_number": event.order_number,
            "delivery_status": event.new_status,
            "order_status": event.order_status,
            "message": f"Order {event.order_number} is now {event.new_status.replace('_', ' ')}.",
        }
        if event.location:
            payload["location"] = event.location
        send_notice(DELIVERY_STATUS_CHANGED, event.buyer_id, payload)
