"""Abstract transport interface for the execution relay."""

from __future__ import annotations

import abc
from typing import Any


class RelayTransport(abc.ABC):
    """One request/response exchange per method, no retries.

    Two implementations:
    - ``JsonRpcRelayTransport``: JSON-RPC 2.0 over HTTP (production)
    - ``InMemoryRelay``: deterministic in-process relay (tests, local demo)

    Implementations raise ``RelayRpcError`` when the relay answers with an
    error and ``RelayTransportError`` when it cannot be reached.
    """

    @abc.abstractmethod
    async def prepare_calls(self, request: dict[str, Any]) -> dict[str, Any]:
        """``wallet_prepareCalls``: returns ``{digest, context, ...}``."""

    @abc.abstractmethod
    async def send_prepared_calls(self, request: dict[str, Any]) -> Any:
        """``wallet_sendPreparedCalls``: returns a result object or a list of them."""

    @abc.abstractmethod
    async def get_calls_status(self, batch_id: str) -> dict[str, Any]:
        """``wallet_getCallsStatus``: read-only status lookup."""

    async def close(self) -> None:
        """Release connections.  No-op by default."""
