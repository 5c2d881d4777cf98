"""Order placement: command and handler."""

import json

from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.order import Order


@marketplace.command(part_of="Order")
class PlaceOrder:
    seller_id = Identifier(required=True)
    business_id = Identifier()
    buyer_id = Identifier()
    items = Text(required=True)  # JSON: list of item snapshots
    customer = Text()  # JSON: {name, phone, email}
    delivery_method = String(required=True, max_length=20)
    delivery_fee = Float(default=0.0)
    delivery_address = String(max_length=500)
    instructions = String(max_length=1000)
    tax = Float(default=0.0)
    discount = Float(default=0.0)
    currency = String(max_length=3, default="UGX")
    payment_method = String(max_length=20, default="cash")


@marketplace.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        items_data = json.loads(command.items) if isinstance(command.items, str) else command.items
        customer = json.loads(command.customer) if isinstance(command.customer, str) else command.customer

        order = Order.create(
            seller_id=command.seller_id,
            business_id=command.business_id,
            buyer_id=command.buyer_id,
            items_data=items_data,
            customer=customer,
            delivery_method=command.delivery_method,
            delivery_fee=command.delivery_fee or 0.0,
            delivery_address=command.delivery_address,
            instructions=command.instructions,
            tax=command.tax or 0.0,
            discount=command.discount or 0.0,
            currency=command.currency or "UGX",
            payment_method=command.payment_method or "cash",
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)
