"""Payment methods accepted at checkout and their categories.

The category decides which gateway branch handles a charge and how the
order's denormalized payment method is labelled.
"""

from enum import Enum

from protean.exceptions import ValidationError


class PaymentMethod(Enum):
    MTN_MOBILE_MONEY = "mtn_mobile_money"
    AIRTEL_MONEY = "airtel_money"
    AFRICELL_MONEY = "africell_money"
    VISA = "visa"
    MASTERCARD = "mastercard"
    FLUTTERWAVE = "flutterwave"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    CASH_ON_DELIVERY = "cash_on_delivery"


class MethodCategory(Enum):
    MOBILE_MONEY = "mobile_money"
    CARD = "card"
    DIGITAL_WALLET = "digital_wallet"
    COD = "cod"


_CATEGORIES = {
    PaymentMethod.MTN_MOBILE_MONEY: MethodCategory.MOBILE_MONEY,
    PaymentMethod.AIRTEL_MONEY: MethodCategory.MOBILE_MONEY,
    PaymentMethod.AFRICELL_MONEY: MethodCategory.MOBILE_MONEY,
    PaymentMethod.VISA: MethodCategory.CARD,
    PaymentMethod.MASTERCARD: MethodCategory.CARD,
    PaymentMethod.FLUTTERWAVE: MethodCategory.DIGITAL_WALLET,
    PaymentMethod.STRIPE: MethodCategory.DIGITAL_WALLET,
    PaymentMethod.PAYPAL: MethodCategory.DIGITAL_WALLET,
    PaymentMethod.CASH_ON_DELIVERY: MethodCategory.COD,
}

# Listing shown to buyers at checkout
METHOD_CATALOG = [
    {
        "id": "mobile_money",
        "name": "Mobile Money",
        "description": "Pay with MTN, Airtel or Africell Mobile Money",
        "methods": [
            {"id": PaymentMethod.MTN_MOBILE_MONEY.value, "name": "MTN Mobile Money"},
            {"id": PaymentMethod.AIRTEL_MONEY.value, "name": "Airtel Money"},
            {"id": PaymentMethod.AFRICELL_MONEY.value, "name": "Africell Money"},
        ],
    },
    {
        "id": "card",
        "name": "Card Payment",
        "description": "Pay with Visa or Mastercard",
        "methods": [
            {"id": PaymentMethod.VISA.value, "name": "Visa"},
            {"id": PaymentMethod.MASTERCARD.value, "name": "Mastercard"},
        ],
    },
    {
        "id": "digital_wallet",
        "name": "Digital Wallet",
        "description": "Pay through a hosted wallet checkout",
        "methods": [
            {"id": PaymentMethod.FLUTTERWAVE.value, "name": "Flutterwave"},
            {"id": PaymentMethod.STRIPE.value, "name": "Stripe"},
            {"id": PaymentMethod.PAYPAL.value, "name": "PayPal"},
        ],
    },
    {
        "id": "cod",
        "name": "Cash on Delivery",
        "description": "Pay in cash when your order arrives",
        "methods": [
            {"id": PaymentMethod.CASH_ON_DELIVERY.value, "name": "Cash on Delivery"},
        ],
    },
]


def parse_method(value: str) -> PaymentMethod:
    """Return the PaymentMethod for `value`, or raise ValidationError."""
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError({"method": [f"Unknown payment method: {value}"]}) from None


def category_for(method: str) -> MethodCategory:
    return _CATEGORIES[parse_method(method)]


def order_payment_method_for(method: str) -> str:
    """Label used on Order.payment.method for a payment method."""
    category = category_for(method)
    if category == MethodCategory.MOBILE_MONEY:
        return "mobile_money"
    if category == MethodCategory.COD:
        return "cash"
    if category == MethodCategory.CARD:
        return "card"
    if parse_method(method) == PaymentMethod.PAYPAL:
        return "paypal"
    return "other"
