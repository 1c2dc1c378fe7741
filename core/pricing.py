"""
Pricing — order and line totals in minor currency units.

Composite (multi-flavor) lines are priced from their flavor list using the
line's pricing strategy; the line's own ``price`` is ignored for them.
Complements are added on top of the resolved unit price and the result is
multiplied by the line quantity. Nothing here raises: missing numbers are 0.
"""
from __future__ import annotations

from models.schemas import OrderLine, OrderSnapshot, PricingType


def _round_half_up_div(total: int, count: int) -> int:
    """Integer division rounded half-up (matches ``Math.round(total / count)``)."""
    return (2 * total + count) // (2 * count)


def line_unit_price(line: OrderLine) -> int:
    if line.flavors:
        prices = [f.price or 0 for f in line.flavors]
        if line.pricing_type == PricingType.SUM:
            return sum(prices)
        if line.pricing_type == PricingType.MAX:
            return max(prices)
        return _round_half_up_div(sum(prices), len(prices))
    return line.price or 0


def complements_total(line: OrderLine) -> int:
    return sum((c.price or 0) * (c.quantity or 0) for c in line.complements)


def line_total(line: OrderLine) -> int:
    return (line_unit_price(line) + complements_total(line)) * (line.quantity or 0)


def order_total(order: OrderSnapshot) -> int:
    """Sum of every line total, in minor units."""
    return sum(line_total(line) for line in order.items)
