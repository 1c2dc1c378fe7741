"""Tests for delivery failure classification."""
import httpx
import pytest

from channels.base import (
    GatewayError, GatewayNotFoundError, GatewayRequestError, TransientDeliveryError,
)
from channels.classifier import FailureKind, classify


class TestClassify:
    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_errors_are_transient(self, status):
        assert classify(GatewayRequestError("boom", status=status)) == FailureKind.TRANSIENT

    def test_not_found_error(self):
        assert classify(GatewayNotFoundError("shop1")) == FailureKind.NOT_FOUND

    def test_generic_404_is_not_found(self):
        assert classify(GatewayError("missing", status=404)) == FailureKind.NOT_FOUND

    @pytest.mark.parametrize("status", [400, 401, 403, 422])
    def test_client_errors_are_terminal(self, status):
        assert classify(GatewayRequestError("bad request", status=status)) == FailureKind.TERMINAL

    @pytest.mark.parametrize("code", ["ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "FetchError"])
    def test_connection_fault_codes_are_transient(self, code):
        assert classify(GatewayRequestError("socket hang up", code=code)) == FailureKind.TRANSIENT

    @pytest.mark.parametrize("message", [
        "Request Timeout while waiting",
        "network unreachable",
        "Service temporarily unavailable",
    ])
    def test_message_markers_are_transient(self, message):
        assert classify(GatewayError(message)) == FailureKind.TRANSIENT

    def test_retryable_delivery_error_is_transient(self):
        assert classify(TransientDeliveryError("send failed", status=None)) == FailureKind.TRANSIENT

    def test_unknown_error_is_terminal(self):
        assert classify(GatewayError("number is not on WhatsApp")) == FailureKind.TERMINAL
        assert classify(ValueError("unexpected")) == FailureKind.TERMINAL

    def test_raw_httpx_errors(self):
        request = httpx.Request("GET", "http://gateway/instance/connectionState/x")
        assert classify(httpx.ConnectError("refused", request=request)) == FailureKind.TRANSIENT

        response = httpx.Response(503, request=request)
        err = httpx.HTTPStatusError("unavailable", request=request, response=response)
        assert classify(err) == FailureKind.TRANSIENT
