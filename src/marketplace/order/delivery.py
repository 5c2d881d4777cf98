"""Delivery: commands and handler for rider assignment and delivery progress."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order
from marketplace.payment.payment import Payment

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class UpdateDeliveryStatus:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=20)
    location = String(max_length=255)
    note = String(max_length=500)


@marketplace.command(part_of="Order")
class AssignRider:
    order_id = Identifier(required=True)
    name = String(required=True, max_length=200)
    phone = String(max_length=30)
    vehicle_type = String(max_length=50)
    vehicle_plate = String(max_length=30)
    rider_id = String(max_length=255)


@marketplace.command_handler(part_of=Order)
class DeliveryHandler:
    @handle(UpdateDeliveryStatus)
    def update_delivery_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.update_delivery_status(command.status, location=command.location, note=command.note)
        repo.add(order)
        return order.status

    @handle(AssignRider)
    def assign_rider(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.assign_rider(
            name=command.name,
            phone=command.phone,
            vehicle_type=command.vehicle_type,
            vehicle_plate=command.vehicle_plate,
            rider_id=command.rider_id,
        )
        repo.add(order)
        if command.rider_id:
            _name_rider_payee(order, command.rider_id)


def _name_rider_payee(order: Order, rider_id: str) -> None:
    """Point rider shares that were created before the rider was known at this rider."""
    repo = current_domain.repository_for(Payment)
    for attempt in repo.find_by_order(str(order.id)):
        payment = repo.get(attempt.id)
        if payment.assign_split_recipient("rider", rider_id):
            repo.add(payment)
            logger.info("Rider share assigned", payment_id=str(payment.id), order_id=str(order.id), rider_id=rider_id)
