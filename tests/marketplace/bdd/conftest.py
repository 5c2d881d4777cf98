"""Shared BDD fixtures and step definitions for the marketplace."""

import json

import pytest
from marketplace.gateway.sandbox_adapter import SANDBOX_SIGNATURE
from marketplace.order.order import Order
from marketplace.payment import orchestrator
from marketplace.payment.payment import Payment
from protean import current_domain
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then, when


@pytest.fixture()
def outcome():
    """Container for effects and captured errors of the last step."""
    return {"effect": None, "exc": None}


def _payment(payment_id):
    return current_domain.repository_for(Payment).get(payment_id)


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the payment gateway is in "{mode}" mode'))
def _(gateway, mode):
    gateway.configure(mode=mode)


@given(
    parsers.cfparse(
        'an order of {quantity:d} items at {unit_price:d} UGX with "{delivery_method}" delivery costing {fee:d} UGX'
    ),
    target_fixture="order_id",
)
def _(quantity, unit_price, delivery_method, fee):
    return orchestrator.place_order(
        seller_id="seller-001",
        buyer_id="buyer-001",
        items=json.dumps(
            [{"product_id": "prod-001", "name": "Kitenge fabric", "quantity": quantity, "unit_price": unit_price}]
        ),
        customer=json.dumps({"name": "Amina N.", "phone": "0772123456"}),
        delivery_method=delivery_method,
        delivery_fee=fee,
    )


@given(parsers.cfparse('the buyer has paid with "{method}" into escrow'), target_fixture="payment_id")
def _(gateway, order_id, method):
    gateway.configure(mode="instant_success")
    return orchestrator.initiate_payment(order_id, method, escrow_requested=True)["payment_id"]


@given(parsers.cfparse('the buyer has started paying with "{method}"'), target_fixture="payment_id")
def _(gateway, order_id, method):
    return orchestrator.initiate_payment(order_id, method)["payment_id"]


# ---------------------------------------------------------------------------
# When steps shared across features
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the buyer pays with "{method}"'), target_fixture="payment_id")
def _(gateway, order_id, method):
    return orchestrator.initiate_payment(order_id, method)["payment_id"]


@when(parsers.cfparse('the gateway reports the payment as "{status}"'))
def _(gateway, payment_id, status, outcome):
    body = json.dumps(
        {"event": "charge.completed", "data": {"tx_ref": _payment(payment_id).transaction_ref, "status": status, "id": 31}}
    )
    outcome["effect"] = orchestrator.process_webhook(SANDBOX_SIGNATURE, body)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the payment status is "{status}"'))
def _(payment_id, status):
    assert _payment(payment_id).status == status


@then(parsers.cfparse("the payment total is {total:d} UGX"))
def _(payment_id, total):
    assert _payment(payment_id).amount.total == total


@then(parsers.cfparse('the escrow status is "{status}"'))
def _(payment_id, status):
    assert _payment(payment_id).escrow.status == status


@then(parsers.cfparse('the "{role}" split is {amount:d} UGX and "{split_status}"'))
def _(payment_id, role, amount, split_status):
    split = next(s for s in _payment(payment_id).splits if s.recipient_role == role)
    assert split.amount == amount
    assert split.status == split_status


@then(parsers.cfparse('the order payment status is "{status}"'))
def _(order_id, status):
    assert _order(order_id).payment.status == status


@then(parsers.cfparse('the order status is "{status}"'))
def _(order_id, status):
    assert _order(order_id).status == status


@then(parsers.cfparse('the gateway outcome is "{effect}"'))
def _(outcome, effect):
    assert outcome["effect"] == effect


@then("the action is rejected")
def _(outcome):
    assert isinstance(outcome["exc"], ValidationError)
