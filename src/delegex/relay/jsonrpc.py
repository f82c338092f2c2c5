"""JSON-RPC 2.0 relay transport over HTTP via httpx."""

from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

from delegex.protocol.errors import RelayRpcError, RelayTransportError
from delegex.relay.base import RelayTransport

logger = logging.getLogger(__name__)

# Refused before processing: safe to send again
REJECTED_STATUSES = frozenset({429, 503})
# Gateway already forwarded the request; the relay may have applied it
UPSTREAM_FAILURE_STATUSES = frozenset({502, 504})


class JsonRpcRelayTransport(RelayTransport):
    """POSTs one JSON-RPC request per call to *relay_url*.

    A single ``httpx.AsyncClient`` is created on first use and reused for all
    requests (connection pooling); pass *client* to supply your own (tests use
    an ``httpx.MockTransport``).  Call ``close()`` to release it.
    """

    def __init__(
        self,
        relay_url: str,
        *,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._relay_url = relay_url
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def call(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request and return its ``result``."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        client = self._get_client()
        try:
            resp = await client.post(self._relay_url, json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            raise RelayTransportError(
                f"{method}: could not connect to relay: {exc}", request_sent=False
            ) from exc
        except httpx.TimeoutException as exc:
            raise RelayTransportError(
                f"{method}: relay request timed out", timed_out=True
            ) from exc
        except httpx.TransportError as exc:
            raise RelayTransportError(f"{method}: network error: {exc}") from exc

        if resp.status_code in REJECTED_STATUSES:
            raise RelayTransportError(
                f"{method}: relay unavailable (HTTP {resp.status_code})", request_sent=False
            )
        if resp.status_code in UPSTREAM_FAILURE_STATUSES:
            raise RelayTransportError(
                f"{method}: relay gateway error (HTTP {resp.status_code})",
                request_sent=True,
                timed_out=resp.status_code == 504,
            )

        try:
            body = resp.json()
        except ValueError:
            raise RelayRpcError(
                f"{method}: malformed relay response (HTTP {resp.status_code})",
                code=resp.status_code,
            ) from None

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            if isinstance(error, dict):
                raise RelayRpcError(
                    str(error.get("message", "relay error")),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RelayRpcError(str(error))

        if resp.is_error:
            raise RelayRpcError(f"{method}: HTTP {resp.status_code}", code=resp.status_code)
        if not isinstance(body, dict) or "result" not in body:
            raise RelayRpcError(f"{method}: response has no result")
        logger.debug("%s ok (id=%s)", method, payload["id"])
        return body["result"]

    async def prepare_calls(self, request: dict[str, Any]) -> dict[str, Any]:
        return await self.call("wallet_prepareCalls", [request])

    async def send_prepared_calls(self, request: dict[str, Any]) -> Any:
        return await self.call("wallet_sendPreparedCalls", [request])

    async def get_calls_status(self, batch_id: str) -> dict[str, Any]:
        return await self.call("wallet_getCallsStatus", [batch_id])
