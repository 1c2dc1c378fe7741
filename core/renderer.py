"""
Message Renderer — order snapshot + event type → WhatsApp text.

Pure and total: the same snapshot always renders the same string, and
combinations without a template render an empty string instead of raising.
Formatting uses WhatsApp markup (``*bold*``, ``_italic_``, triple-backtick
monospace).
"""
from __future__ import annotations

from typing import Optional, Union

from core.pricing import order_total
from models.schemas import (
    DeliveryMethod, EventType, OrderLine, OrderSnapshot, OrderStatus, PaymentMethod,
)

NBSP = "\u00a0"

IN_PREPARATION_MESSAGE = "Agora vai! Seu pedido já está *em produção* 🥳"
OUT_FOR_DELIVERY_MESSAGE = "Tô chegando! Seu pedido já está na rota de *entrega* 🛵"
CLOSING_MESSAGE = "Obrigado pela preferência, se precisar de algo é só chamar! 😉"

STATUS_MESSAGES: dict[str, str] = {
    OrderStatus.IN_PREPARATION.value: IN_PREPARATION_MESSAGE,
    OrderStatus.COMPLETED.value: OUT_FOR_DELIVERY_MESSAGE,
}

DELIVERY_LABELS: dict[str, str] = {
    DeliveryMethod.DELIVERY.value: "*Delivery*",
    DeliveryMethod.PICKUP.value: "*Retirada no local*",
}
DINE_IN_LABEL = "*Consumo no local*"

ITEM_INDENT = " " * 5
ENTRY_INDENT = " " * 11


def format_brl(minor: int) -> str:
    """Format minor units as pt-BR currency, e.g. ``123456`` → ``R$ 1.234,56``."""
    sign = "-" if minor < 0 else ""
    reais, cents = divmod(abs(int(minor)), 100)
    grouped = f"{reais:,}".replace(",", ".")
    return f"{sign}R${NBSP}{grouped},{cents:02d}"


def _quantity_prefix(quantity: Optional[int]) -> str:
    return f"{quantity}x " if quantity and quantity > 1 else ""


def _mono(text: str) -> str:
    return f"```{text}```"


def _render_line(line: OrderLine) -> str:
    out = f"📦 {_mono(_quantity_prefix(line.quantity) + line.name)}"

    if line.flavors:
        out += f"\n{ITEM_INDENT}_Sabores_"
        fraction = f"1/{len(line.flavors)}"
        for flavor in line.flavors:
            out += f"\n{ENTRY_INDENT}{_mono(f'{fraction} {flavor.name}')}"

    if line.complements:
        out += f"\n{ITEM_INDENT}_Complementos_"
        for complement in line.complements:
            out += f"\n{ENTRY_INDENT}{_mono(_quantity_prefix(complement.quantity) + complement.name)}"

    if line.notes:
        out += f"\n\n*OBS:* {line.notes}\n"
    return out + "\n"


def _payment_line(order: OrderSnapshot) -> str:
    method = order.payment_method
    if method == PaymentMethod.CASH.value:
        if order.change:
            return f"💵 *Dinheiro (troco para {format_brl(order.change)})*"
        return "💵 *Dinheiro (não precisa de troco)*"
    if method == PaymentMethod.PIX.value:
        return "💵 *Pix*"
    return "💳 *Cartão*"


def _delivery_line(order: OrderSnapshot) -> str:
    return f"🛵 {DELIVERY_LABELS.get(order.delivery_method_code or '', DINE_IN_LABEL)}"


def render_order_created(order: OrderSnapshot) -> str:
    message = f"Pedido *n° {order.code}*\n\n*Itens:*\n"
    for line in order.items:
        message += _render_line(line)

    if order.notes:
        message += f"\n*OBS:* {order.notes}\n"

    message += (
        f"\n{_payment_line(order)}\n"
        f"{_delivery_line(order)}\n"
        f"\nTotal *{format_brl(order_total(order))}*\n"
        f"\n{CLOSING_MESSAGE}"
    )
    return message


def render_status_updated(order: OrderSnapshot) -> str:
    return STATUS_MESSAGES.get(order.status, "")


def render(order: OrderSnapshot, event_type: Union[EventType, str]) -> str:
    """Render the customer notification for an order event."""
    try:
        event = EventType(event_type)
    except ValueError:
        return ""
    if event == EventType.ORDER_CREATED:
        return render_order_created(order)
    return render_status_updated(order)
