"""
Gateway Channel — base types shared by every messaging gateway client.

Provides:
- GatewayError: structured error hierarchy, built once where a failure happens
- InstanceState: connection state of a gateway instance, fetched per attempt
- GatewayClient: abstract interface the job processor depends on
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Optional

from job_queue.message_queue import UnrecoverableJobError

READY_STATE = "open"


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class GatewayError(Exception):
    """Base exception for all gateway operations."""

    def __init__(
        self,
        message: str,
        instance: str = "",
        status: Optional[int] = None,
        code: str = "",
        retryable: bool = False,
    ):
        self.instance = instance
        self.status = status
        self.code = code
        self.retryable = retryable
        super().__init__(message)


class GatewayRequestError(GatewayError):
    """The provider answered with an error status or the request never completed."""


class GatewayNotFoundError(GatewayError):
    """The instance is unknown to the provider; needs reconfiguration upstream."""

    def __init__(self, instance: str, message: str = ""):
        super().__init__(
            message or f"Gateway instance {instance} not found",
            instance=instance,
            status=404,
        )


class DeliveryError(GatewayError):
    """A classified delivery failure surfaced to the queue runtime."""


class TransientDeliveryError(DeliveryError):
    """Network or provider-side fault; the queue retries with backoff."""

    def __init__(self, message: str, instance: str = "", status: Optional[int] = None, code: str = ""):
        super().__init__(message, instance=instance, status=status, code=code, retryable=True)


class TerminalDeliveryError(DeliveryError, UnrecoverableJobError):
    """Will not succeed without intervention; the job is failed permanently."""

    def __init__(self, message: str, instance: str = "", status: Optional[int] = None, code: str = ""):
        super().__init__(message, instance=instance, status=status, code=code, retryable=False)


# ══════════════════════════════════════════════════════════════
#  INSTANCE STATE
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class InstanceState:
    instance: str
    state: str = ""

    @property
    def ready(self) -> bool:
        return self.state == READY_STATE


# ══════════════════════════════════════════════════════════════
#  GATEWAY CLIENT — Abstract Base
# ══════════════════════════════════════════════════════════════

class GatewayClient(abc.ABC):
    """
    Thin façade over a messaging provider.

    Implementations make exactly one outbound request per call and never
    retry or cache; retry policy belongs to the queue runtime.
    """

    @abc.abstractmethod
    async def get_instance_state(self, instance: str) -> InstanceState:
        """Raises GatewayNotFoundError for unknown instances, GatewayRequestError otherwise."""
        ...

    @abc.abstractmethod
    async def send_text(self, instance: str, number: str, text: str) -> dict[str, Any]:
        ...

    async def close(self) -> None:
        pass
