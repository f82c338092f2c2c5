"""Core value types shared by the builders, the executor and the server."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from delegex.protocol.address import checksum_address, normalize_address
from delegex.protocol.errors import ErrorKind


class KeyType(str, Enum):
    """Signature schemes a backend session key may use."""

    P256 = "p256"
    SECP256K1 = "secp256k1"


class SpendPeriod(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


def utc_now() -> datetime:
    """Timezone-aware UTC ``datetime`` (the form stored in the database)."""
    return datetime.now(timezone.utc)


def unix_now() -> int:
    return int(time.time())


def hex_quantity(value: int) -> str:
    """Encode a non-negative integer as a JSON-RPC hex quantity (``0x0``)."""
    if value < 0:
        raise ValueError(f"Quantity must be non-negative, got {value}")
    return hex(value)


def _normalize_calldata(data: str | bytes | None) -> str:
    if data is None:
        return "0x"
    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    text = data.strip()
    if not text.startswith("0x"):
        text = "0x" + text
    body = text[2:]
    if len(body) % 2 or any(c not in "0123456789abcdefABCDEF" for c in body):
        raise ValueError(f"Calldata is not valid hex: {data!r}")
    return "0x" + body.lower()


@dataclass(frozen=True)
class Call:
    """A single contract call: target address, ABI-encoded data, native value."""

    target: str
    calldata: str = "0x"
    value: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "target", checksum_address(self.target))
        object.__setattr__(self, "calldata", _normalize_calldata(self.calldata))
        if self.value < 0:
            raise ValueError(f"Call value must be non-negative, got {self.value}")

    @property
    def normalized_target(self) -> str:
        return normalize_address(self.target)

    def to_relay(self) -> dict[str, Any]:
        """Wire form for ``wallet_prepareCalls``."""
        entry: dict[str, Any] = {"to": self.target, "data": self.calldata}
        if self.value:
            entry["value"] = hex_quantity(self.value)
        return entry


@dataclass(frozen=True)
class DelegatedCallBatch:
    """Ordered, non-empty list of calls meant to execute atomically."""

    calls: tuple[Call, ...]

    def __post_init__(self) -> None:
        calls = tuple(self.calls)
        if not calls:
            raise ValueError("A call batch must contain at least one call")
        object.__setattr__(self, "calls", calls)

    @classmethod
    def of(cls, *calls: Call) -> DelegatedCallBatch:
        return cls(calls=calls)

    @property
    def targets(self) -> frozenset[str]:
        """Normalized target set, used as the resolver's required targets."""
        return frozenset(call.normalized_target for call in self.calls)

    def __len__(self) -> int:
        return len(self.calls)

    def to_relay(self) -> list[dict[str, Any]]:
        return [call.to_relay() for call in self.calls]


@dataclass
class ExecutionOutcome:
    """Normalized result of one execution request.  Never persisted here."""

    success: bool
    relay_batch_id: str | None = None
    transaction_hashes: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None
    error_detail: str | None = None
    grant_id: str | None = None

    @classmethod
    def succeeded(
        cls, relay_batch_id: str, transaction_hashes: list[str], grant_id: str | None = None
    ) -> ExecutionOutcome:
        return cls(
            success=True,
            relay_batch_id=relay_batch_id,
            transaction_hashes=list(transaction_hashes),
            grant_id=grant_id,
        )

    @classmethod
    def failed(
        cls,
        kind: ErrorKind,
        detail: str,
        *,
        grant_id: str | None = None,
        relay_batch_id: str | None = None,
    ) -> ExecutionOutcome:
        return cls(
            success=False,
            relay_batch_id=relay_batch_id,
            error_kind=kind,
            error_detail=detail,
            grant_id=grant_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "relayBatchId": self.relay_batch_id,
            "transactionHashes": list(self.transaction_hashes),
            "errorKind": self.error_kind.value if self.error_kind else None,
            "errorDetail": self.error_detail,
            "grantId": self.grant_id,
        }
