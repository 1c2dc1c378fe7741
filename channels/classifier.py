"""
Failure Classifier — the single authority on whether a delivery failure is
worth retrying.
"""
from __future__ import annotations

from enum import Enum

import httpx

from channels.base import GatewayError, GatewayNotFoundError

CONNECTION_FAULT_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "FetchError"})
TRANSIENT_MESSAGE_MARKERS = ("timeout", "network", "temporarily unavailable")


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    TERMINAL = "terminal"


def classify(error: BaseException) -> FailureKind:
    if isinstance(error, GatewayNotFoundError):
        return FailureKind.NOT_FOUND
    if isinstance(error, GatewayError) and error.retryable:
        return FailureKind.TRANSIENT

    status = error.status if isinstance(error, GatewayError) else None
    code = error.code if isinstance(error, GatewayError) else ""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code

    if status == 404:
        return FailureKind.NOT_FOUND
    if status is not None and status >= 500:
        return FailureKind.TRANSIENT
    if code in CONNECTION_FAULT_CODES or isinstance(error, httpx.TransportError):
        return FailureKind.TRANSIENT

    message = str(error).lower()
    if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
        return FailureKind.TRANSIENT
    return FailureKind.TERMINAL
