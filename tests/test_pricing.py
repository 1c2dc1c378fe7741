"""Tests for line and order pricing."""
import pytest

from core.pricing import complements_total, line_total, line_unit_price, order_total
from models.schemas import OrderLine, OrderSnapshot


def pizza(prices, pricing=None, **kw):
    data = {"name": "Pizza", "flavors": [{"name": f"F{i}", "price": p} for i, p in enumerate(prices)]}
    if pricing:
        data["pricingType"] = pricing
    data.update(kw)
    return OrderLine.model_validate(data)


class TestLineUnitPrice:
    @pytest.mark.parametrize("pricing,expected", [
        ("average", 600),
        ("sum", 1200),
        ("max", 700),
        (None, 600),
    ])
    def test_strategies(self, pricing, expected):
        assert line_unit_price(pizza([500, 700], pricing)) == expected

    def test_average_rounds_half_up(self):
        assert line_unit_price(pizza([100, 101])) == 101       # 100.5
        assert line_unit_price(pizza([100, 100, 101])) == 100  # 100.33

    def test_flavors_ignore_base_price(self):
        assert line_unit_price(pizza([1000, 1400], price=99999)) == 1200

    def test_missing_flavor_price_counts_as_zero(self):
        assert line_unit_price(pizza([None, 1000], "sum")) == 1000

    def test_flat_price(self):
        assert line_unit_price(OrderLine(name="Coke", price=650)) == 650

    def test_missing_price_defaults_to_zero(self):
        assert line_unit_price(OrderLine(name="Water")) == 0


class TestTotals:
    def test_complements_added_before_quantity(self):
        line = OrderLine.model_validate({
            "name": "Burger", "quantity": 3, "price": 2000,
            "complements": [
                {"name": "Bacon", "quantity": 2, "price": 300},
                {"name": "Cheese", "quantity": 1, "price": None},
            ],
        })
        assert complements_total(line) == 600
        assert line_total(line) == (2000 + 600) * 3

    def test_complement_without_quantity_adds_nothing(self):
        order = OrderSnapshot.model_validate({"code": 1, "items": [
            {"name": "Burger", "price": 1000, "complements": [{"name": "Bacon", "price": 300}]},
        ]})
        assert order_total(order) == 1000

    def test_null_complement_fields_do_not_raise(self):
        line = OrderLine.model_validate({
            "name": "Burger", "price": 1000,
            "complements": [{"name": None, "quantity": None, "price": None}],
        })
        assert line_total(line) == 1000

    def test_order_total_sums_lines(self):
        order = OrderSnapshot.model_validate({
            "code": 1,
            "items": [
                {"name": "Coke", "quantity": 2, "price": 500},
                {"name": "Pizza", "quantity": 1,
                 "pizzaFlavors": [{"name": "A", "price": 1000}, {"name": "B", "price": 1400}],
                 "orderItemComplements": [{"name": "Borda", "quantity": 1, "price": 800}]},
            ],
        })
        assert order_total(order) == 1000 + 2000

    def test_complement_order_does_not_change_total(self):
        comps = [
            {"name": "A", "quantity": 1, "price": 150},
            {"name": "B", "quantity": 3, "price": 275},
            {"name": "C", "quantity": 2, "price": 99},
        ]
        a = OrderSnapshot.model_validate({"code": 1, "items": [
            {"name": "X", "quantity": 2, "price": 1000, "complements": comps}]})
        b = OrderSnapshot.model_validate({"code": 1, "items": [
            {"name": "X", "quantity": 2, "price": 1000, "complements": list(reversed(comps))}]})
        assert order_total(a) == order_total(b) == (1000 + 150 + 825 + 198) * 2

    def test_empty_order(self):
        assert order_total(OrderSnapshot(code=1)) == 0
