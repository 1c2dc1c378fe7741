"""Tests for the WhatsApp message renderer."""
import pytest

from core.renderer import (
    CLOSING_MESSAGE, IN_PREPARATION_MESSAGE, NBSP, OUT_FOR_DELIVERY_MESSAGE,
    format_brl, render,
)
from models.schemas import EventType, OrderSnapshot
from conftest import make_order_payload


def snapshot(**overrides) -> OrderSnapshot:
    return OrderSnapshot.model_validate(make_order_payload(**overrides))


# ══════════════════════════════════════════════════════════════
#  Currency
# ══════════════════════════════════════════════════════════════

class TestFormatBrl:
    @pytest.mark.parametrize("minor,expected", [
        (0, f"R${NBSP}0,00"),
        (5, f"R${NBSP}0,05"),
        (1200, f"R${NBSP}12,00"),
        (123456, f"R${NBSP}1.234,56"),
        (100000000, f"R${NBSP}1.000.000,00"),
    ])
    def test_pt_br_format(self, minor, expected):
        assert format_brl(minor) == expected


# ══════════════════════════════════════════════════════════════
#  Status updates
# ══════════════════════════════════════════════════════════════

class TestStatusUpdated:
    def test_in_preparation(self):
        assert render(snapshot(status="in_preparation"),
                      EventType.ORDER_STATUS_UPDATED) == IN_PREPARATION_MESSAGE

    def test_completed_means_out_for_delivery(self):
        assert render(snapshot(status="completed"),
                      EventType.ORDER_STATUS_UPDATED) == OUT_FOR_DELIVERY_MESSAGE

    @pytest.mark.parametrize("status", ["pending", "canceled", ""])
    def test_other_statuses_render_empty(self, status):
        assert render(snapshot(status=status), EventType.ORDER_STATUS_UPDATED) == ""

    def test_unknown_event_type_renders_empty(self):
        assert render(snapshot(), "ORDER_DELETED") == ""

    def test_accepts_event_type_string(self):
        assert render(snapshot(status="in_preparation"),
                      "ORDER_STATUS_UPDATED") == IN_PREPARATION_MESSAGE


# ══════════════════════════════════════════════════════════════
#  Order created
# ══════════════════════════════════════════════════════════════

class TestOrderCreated:
    def test_full_layout(self, order):
        expected = (
            "Pedido *n° 42*\n"
            "\n"
            "*Itens:*\n"
            "📦 ```Pizza```\n"
            "     _Sabores_\n"
            "           ```1/2 Calabresa```\n"
            "           ```1/2 Portuguesa```\n"
            "\n"
            f"💵 *Dinheiro (troco para R${NBSP}5,00)*\n"
            "🛵 *Delivery*\n"
            "\n"
            f"Total *R${NBSP}12,00*\n"
            "\n"
            f"{CLOSING_MESSAGE}"
        )
        assert render(order, EventType.ORDER_CREATED) == expected

    def test_rendering_is_deterministic(self, order):
        assert render(order, EventType.ORDER_CREATED) == render(order, EventType.ORDER_CREATED)

    def test_quantity_prefix_only_above_one(self):
        order = snapshot(items=[
            {"quantity": 3, "name": "Coca-Cola", "price": 500,
             "complements": [{"quantity": 1, "name": "Gelo", "price": 0},
                             {"quantity": 2, "name": "Limão", "price": 50}]},
            {"quantity": 1, "name": "Água", "price": 300},
        ])
        text = render(order, EventType.ORDER_CREATED)
        assert "📦 ```3x Coca-Cola```" in text
        assert "📦 ```Água```" in text
        assert "     _Complementos_\n           ```Gelo```\n           ```2x Limão```" in text
        assert f"Total *R${NBSP}21,00*" in text

    def test_complement_with_null_fields_renders(self):
        order = snapshot(items=[{"quantity": 1, "name": "Burger", "price": 1000,
                                 "orderItemComplements": [{"name": None, "quantity": None, "price": 300}]}])
        text = render(order, EventType.ORDER_CREATED)
        assert "     _Complementos_\n           ``````" in text
        assert f"Total *R${NBSP}10,00*" in text

    def test_empty_blocks_are_suppressed(self):
        text = render(snapshot(items=[{"quantity": 1, "name": "Água", "price": 300}]),
                      EventType.ORDER_CREATED)
        assert "_Sabores_" not in text
        assert "_Complementos_" not in text
        assert "*OBS:*" not in text

    def test_line_and_order_notes(self):
        order = snapshot(
            notes="Sem campainha",
            items=[{"quantity": 1, "name": "Pizza", "price": 3000, "notes": "Sem cebola"}],
        )
        text = render(order, EventType.ORDER_CREATED)
        assert "📦 ```Pizza```\n\n*OBS:* Sem cebola\n\n" in text
        assert "\n*OBS:* Sem campainha\n" in text
        assert text.index("Sem cebola") < text.index("Sem campainha")

    def test_cash_without_change(self):
        text = render(snapshot(change=None), EventType.ORDER_CREATED)
        assert "💵 *Dinheiro (não precisa de troco)*" in text

    def test_cash_with_zero_change(self):
        text = render(snapshot(change=0), EventType.ORDER_CREATED)
        assert "não precisa de troco" in text

    def test_pix(self):
        assert "💵 *Pix*" in render(snapshot(paymentMethod="pix"), EventType.ORDER_CREATED)

    @pytest.mark.parametrize("method", ["card", "voucher", ""])
    def test_card_and_unknown_methods(self, method):
        assert "💳 *Cartão*" in render(snapshot(paymentMethod=method), EventType.ORDER_CREATED)

    @pytest.mark.parametrize("code,label", [
        ("delivery", "🛵 *Delivery*"),
        ("pickup", "🛵 *Retirada no local*"),
        ("dine_in", "🛵 *Consumo no local*"),
        (None, "🛵 *Consumo no local*"),
    ])
    def test_delivery_labels(self, code, label):
        assert label in render(snapshot(deliveryMethodCode=code), EventType.ORDER_CREATED)

    def test_ends_with_closing_message(self, order):
        assert render(order, EventType.ORDER_CREATED).endswith(f"\n\n{CLOSING_MESSAGE}")
