"""Relay error classification.

Relay errors are loosely typed free text.  ``classify_relay_error`` maps a
message (and an optional JSON-RPC code) onto the closed :class:`ErrorKind`
set with ordered pattern rules; the first match wins and anything
unrecognized becomes ``UNKNOWN_RELAY_ERROR``.  It never raises.
"""

from __future__ import annotations

import asyncio
import re
from typing import NamedTuple

from delegex.protocol.errors import ErrorKind, RelayRpcError, RelayTransportError


class Rule(NamedTuple):
    kind: ErrorKind
    pattern: re.Pattern[str]


def _rule(kind: ErrorKind, *alternatives: str) -> Rule:
    return Rule(kind, re.compile("|".join(alternatives), re.IGNORECASE))


# Order matters: "invalid precall: permission mismatch" must hit the stale
# rule before the generic permission rule sees the word "permission".
RULES: tuple[Rule, ...] = (
    _rule(
        ErrorKind.DUPLICATE_BATCH,
        r"duplicate\s+(call|batch|bundle|intent)",
        r"already\s+(been\s+)?(consumed|executed|submitted|processed)",
        r"nonce\s+(already\s+used|too\s+low)",
    ),
    _rule(
        ErrorKind.STALE_OR_MISMATCHED_GRANT,
        r"invalid\s+pre-?call",
        r"context\s+mismatch",
        r"permission\s+mismatch",
        r"(stale|expired)\s+(quote|context)",
        r"quote\s+(has\s+)?expired",
        r"unknown\s+permission",
        r"no\s+active\s+permission",
    ),
    _rule(
        ErrorKind.PERMISSION_DENIED,
        r"insufficient\s+permission",
        r"unauthori[sz]ed",
        r"permission\s+denied",
        r"not\s+(permitted|allowed)",
        r"(session\s+)?key\s+(has\s+)?expired",
        r"spend(ing)?\s+limit",
    ),
    _rule(
        ErrorKind.PARTIAL_EXECUTION_RISK,
        r"partial(ly)?\s+(execution|executed|applied|success)",
        r"non-?atomic",
    ),
    _rule(
        ErrorKind.TRANSIENT_NETWORK_ERROR,
        r"time(d)?\s*out",
        r"\bnetwork\b",
        r"connection\s+(refused|reset|error|closed)",
        r"fetch\s+failed",
        r"econn(refused|reset)",
        r"service\s+unavailable",
        r"bad\s+gateway",
        r"gateway\s+timeout",
        r"rate\s+limit",
        r"too\s+many\s+requests",
    ),
)


def classify_relay_error(message: str | None, code: int | None = None) -> ErrorKind:
    """Map a relay error message onto an :class:`ErrorKind`."""
    text = message or ""
    for rule in RULES:
        if rule.pattern.search(text):
            return rule.kind
    # JSON-RPC "server busy"-style codes with no recognizable text
    if code in (429, -32005):
        return ErrorKind.TRANSIENT_NETWORK_ERROR
    return ErrorKind.UNKNOWN_RELAY_ERROR


def classify_exception(exc: BaseException, *, phase: str) -> ErrorKind:
    """Classify an exception raised while talking to the relay.

    *phase* is ``"prepare"`` or ``"submit"``.  Transport failures during
    submit are ambiguous unless the request provably never left the process.
    """
    if isinstance(exc, RelayTransportError):
        if phase == "submit" and exc.request_sent:
            return ErrorKind.AMBIGUOUS_OUTCOME
        return ErrorKind.TRANSIENT_NETWORK_ERROR
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        if phase == "submit":
            return ErrorKind.AMBIGUOUS_OUTCOME
        return ErrorKind.TRANSIENT_NETWORK_ERROR
    if isinstance(exc, RelayRpcError):
        return classify_relay_error(exc.message, exc.code)
    return classify_relay_error(str(exc))
