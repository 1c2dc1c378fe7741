"""
Core data models for the order notifier.
These are the universal types shared across all modules.

Upstream producers emit order payloads in more than one shape (the backend
uses ``orderItemComplements`` / ``orderItemPizzaFlavors``, the storefront uses
``complements`` / ``pizzaFlavors``). The adapters here fold both into a single
normalized OrderLine so nothing downstream branches on field-name variants.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class EventType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_STATUS_UPDATED = "ORDER_STATUS_UPDATED"


class OrderStatus(str, Enum):
    IN_PREPARATION = "in_preparation"
    COMPLETED = "completed"


class PricingType(str, Enum):
    SUM = "sum"
    AVERAGE = "average"
    MAX = "max"


class PaymentMethod(str, Enum):
    CASH = "cash"
    PIX = "pix"
    CARD = "card"


class DeliveryMethod(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"
    DINE_IN = "dine_in"


def _first_present(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


class _Snapshot(BaseModel):
    """Immutable, camelCase-tolerant base for job payload models."""
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ──────────────────────────────────────────────────────────────
#  Order lines
# ──────────────────────────────────────────────────────────────

class _Named(_Snapshot):
    name: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _null_name(cls, value: Any) -> Any:
        return "" if value is None else value


class Complement(_Named):
    """An add-on attached to an order line. A missing quantity counts as 0."""
    quantity: Optional[int] = None
    price: Optional[int] = None               # minor units


class PizzaFlavor(_Named):
    price: Optional[int] = None               # minor units


class OrderLine(_Snapshot):
    """A single line of an order, normalized from either upstream schema."""
    quantity: int = Field(default=1, ge=1)
    name: str = ""
    price: Optional[int] = None               # ignored when flavors are present
    notes: Optional[str] = None
    flavors: tuple[PizzaFlavor, ...] = ()
    pricing_type: PricingType = PricingType.AVERAGE
    complements: tuple[Complement, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _normalize_variants(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw = dict(data)

        complements = _first_present(raw, "complements", "orderItemComplements")
        flavors = _first_present(raw, "flavors", "pizzaFlavors", "orderItemPizzaFlavors")

        pizza_config = raw.get("pizzaConfig") or {}
        pricing = (
            raw.get("pricing_type")
            or raw.get("pricingType")
            or raw.get("pizzaPricingType")
            or (pizza_config.get("pricingType") if isinstance(pizza_config, dict) else None)
        )
        if isinstance(pricing, PricingType):
            pricing = pricing.value
        if pricing not in {p.value for p in PricingType}:
            pricing = PricingType.AVERAGE.value

        for key in ("orderItemComplements", "pizzaFlavors", "orderItemPizzaFlavors",
                    "pizzaPricingType", "pizzaConfig", "pricingType"):
            raw.pop(key, None)
        raw["complements"] = complements or []
        raw["flavors"] = flavors or []
        raw["pricing_type"] = pricing
        return raw


# ──────────────────────────────────────────────────────────────
#  Order snapshot
# ──────────────────────────────────────────────────────────────

class OrderSnapshot(_Snapshot):
    """Projection of an order at event time. Never mutated after job receipt."""
    code: int
    customer_name: str = ""
    customer_phone: str = ""
    notes: Optional[str] = None
    payment_method: str = ""
    change: Optional[int] = None              # minor units
    status: str = ""
    updated_at: Optional[str] = None
    delivery_method_code: Optional[str] = None
    items: tuple[OrderLine, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _coerce_timestamp(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("updatedAt", "updated_at"):
                value = data.get(key)
                if value is not None and not isinstance(value, str):
                    data = {**data, key: value.isoformat()}
        return data


# ──────────────────────────────────────────────────────────────
#  Delivery job — the unit of work on the queue
# ──────────────────────────────────────────────────────────────

class DeliveryJob(_Snapshot):
    """
    Job payload produced upstream.

    Accepts both the producer's historical keys (``type``,
    ``evolutionInstance``) and the neutral ones (``eventType``,
    ``gatewayInstance``).
    """
    event_type: EventType
    order: OrderSnapshot
    sequence: int = 0
    gateway_instance: str

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw = dict(data)
        if "event_type" not in raw and "eventType" not in raw and "type" in raw:
            raw["event_type"] = raw.pop("type")
        if ("gateway_instance" not in raw and "gatewayInstance" not in raw
                and "evolutionInstance" in raw):
            raw["gateway_instance"] = raw.pop("evolutionInstance")
        return raw

    def to_payload(self) -> dict[str, Any]:
        """Serialize back to the camelCase wire shape used on the queue."""
        return self.model_dump(mode="json", by_alias=True)
