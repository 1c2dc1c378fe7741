"""
Evolution Gateway Client — WhatsApp delivery through an Evolution API server.

Endpoints:
  GET  {base}/instance/connectionState/{instance}  → {"instance": {"state": "open"}}
  POST {base}/message/sendText/{instance}          ← {"number": ..., "text": ...}

Every request carries the ``apikey`` header and runs under a bounded httpx
timeout so a hung gateway cannot stall the single worker. Failures are mapped
to GatewayError subclasses here and nowhere else.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx

from channels.base import (
    GatewayClient, GatewayNotFoundError, GatewayRequestError, InstanceState,
)

logger = structlog.get_logger()


def _transport_code(exc: httpx.TransportError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return "FetchError"


class EvolutionClient(GatewayClient):
    """Evolution API client. One pooled AsyncClient per worker process."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        connect_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"apikey": self.api_key},
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, instance: str, action: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            resp = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            code = _transport_code(e)
            logger.warning("evolution_transport_error",
                           action=action, instance=instance, code=code, error=str(e))
            raise GatewayRequestError(
                f"{action}: {type(e).__name__}: {e}", instance=instance, code=code,
            ) from e

        if resp.status_code == 404:
            raise GatewayNotFoundError(instance)
        if resp.status_code >= 400:
            logger.error("evolution_api_error",
                         action=action,
                         instance=instance,
                         status=resp.status_code,
                         body=resp.text[:500])
            raise GatewayRequestError(
                f"{action}: request failed with status code {resp.status_code}",
                instance=instance,
                status=resp.status_code,
            )
        return resp

    # ── Readiness ─────────────────────────────────────────────

    async def get_instance_state(self, instance: str) -> InstanceState:
        resp = await self._request(
            "GET", f"/instance/connectionState/{instance}",
            instance=instance, action="Failed to fetch connection state",
        )
        try:
            body = resp.json()
        except ValueError:
            body = {}
        data = body.get("instance") if isinstance(body, dict) else None
        state = data.get("state", "") if isinstance(data, dict) else ""
        return InstanceState(instance=instance, state=state or "")

    # ── Send ──────────────────────────────────────────────────

    async def send_text(self, instance: str, number: str, text: str) -> dict[str, Any]:
        resp = await self._request(
            "POST", f"/message/sendText/{instance}",
            instance=instance, action="Failed to send message",
            json={"number": number, "text": text},
        )
        try:
            result = resp.json()
        except ValueError:
            result = {}
        key = result.get("key") if isinstance(result, dict) else None
        message_id = str(key.get("id") or "") if isinstance(key, dict) else ""
        logger.info("evolution_text_sent", instance=instance, to=number, msg_id=message_id)
        return {"status": "sent", "channel_message_id": message_id,
                "raw": result if isinstance(result, dict) else {}}

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
