"""Messaging gateway clients and the delivery error taxonomy."""
from channels.base import (
    GatewayClient,
    GatewayError,
    GatewayRequestError,
    GatewayNotFoundError,
    DeliveryError,
    TransientDeliveryError,
    TerminalDeliveryError,
    InstanceState,
)
from channels.classifier import FailureKind, classify
from channels.evolution_client import EvolutionClient

__all__ = [
    "GatewayClient", "GatewayError", "GatewayRequestError",
    "GatewayNotFoundError", "DeliveryError", "TransientDeliveryError", "TerminalDeliveryError",
    "InstanceState", "FailureKind", "classify", "EvolutionClient",
]
