import pytest
from marketplace.payment.methods import (
    METHOD_CATALOG,
    MethodCategory,
    PaymentMethod,
    category_for,
    order_payment_method_for,
    parse_method,
)
from protean.exceptions import ValidationError


class TestCategories:
    @pytest.mark.parametrize(
        "method, category",
        [
            ("mtn_mobile_money", MethodCategory.MOBILE_MONEY),
            ("airtel_money", MethodCategory.MOBILE_MONEY),
            ("africell_money", MethodCategory.MOBILE_MONEY),
            ("visa", MethodCategory.CARD),
            ("mastercard", MethodCategory.CARD),
            ("flutterwave", MethodCategory.DIGITAL_WALLET),
            ("paypal", MethodCategory.DIGITAL_WALLET),
            ("cash_on_delivery", MethodCategory.COD),
        ],
    )
    def test_category_for(self, method, category):
        assert category_for(method) == category

    def test_unknown_method_rejected(self):
        with pytest.raises(ValidationError):
            parse_method("barter")


class TestOrderLabels:
    @pytest.mark.parametrize(
        "method, label",
        [
            ("airtel_money", "mobile_money"),
            ("cash_on_delivery", "cash"),
            ("visa", "card"),
            ("paypal", "paypal"),
            ("stripe", "other"),
        ],
    )
    def test_order_payment_method_for(self, method, label):
        assert order_payment_method_for(method) == label


class TestCatalog:
    def test_every_method_is_listed_once(self):
        listed = [m["id"] for category in METHOD_CATALOG for m in category["methods"]]
        assert sorted(listed) == sorted(m.value for m in PaymentMethod)

    def test_catalog_categories_match(self):
        for category in METHOD_CATALOG:
            for method in category["methods"]:
                assert category_for(method["id"]).value == category["id"]
