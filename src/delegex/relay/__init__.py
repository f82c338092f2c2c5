"""Relay transports for the prepare/sign/submit protocol."""

from delegex.relay.base import RelayTransport
from delegex.relay.jsonrpc import JsonRpcRelayTransport
from delegex.relay.memory import InMemoryRelay

MEMORY_URL = "memory://"


def create_relay_transport(relay_url: str, *, timeout: float = 15.0) -> RelayTransport:
    """Pick the transport for *relay_url*; ``memory://`` gives the in-process relay."""
    if relay_url.startswith(MEMORY_URL):
        return InMemoryRelay()
    return JsonRpcRelayTransport(relay_url, timeout=timeout)


__all__ = [
    "RelayTransport",
    "JsonRpcRelayTransport",
    "InMemoryRelay",
    "MEMORY_URL",
    "create_relay_transport",
]
