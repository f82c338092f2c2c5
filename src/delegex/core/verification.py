"""Wallet ownership verification by signed challenge.

Flow:

1. ``issue_challenge(identity, handle)`` renders a message embedding the
   identity, handle, a millisecond timestamp and a random nonce, and
   remembers its keccak hash for ``ttl_seconds``.
2. The user signs the message with their wallet (``personal_sign``).
3. ``verify(address, signature, message, identity, handle)`` recovers the
   signer, checks the embedded identity and timestamp, consumes the issued
   challenge and records the link, superseding any earlier one.

A challenge can be redeemed once.  A failed verification writes nothing.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

from delegex.db.models import VerifiedLink
from delegex.db.stores import LinkStore
from delegex.protocol.address import validate_address
from delegex.protocol.crypto import keccak_text, recover_message_signer
from delegex.protocol.errors import (
    ChallengeExpiredError,
    InvalidChallengeError,
    SignatureMismatchError,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600
# Tolerated clock skew for timestamps slightly in the future
MAX_FUTURE_SKEW_MS = 60_000

MESSAGE_TEMPLATE = (
    "{app_name} Wallet Verification\n"
    "\n"
    "I am linking my wallet to account @{handle} (ID: {identity})\n"
    "\n"
    "Timestamp: {timestamp}\n"
    "Nonce: {nonce}\n"
    "\n"
    "This signature proves I control this wallet and authorizes {app_name} "
    "to execute transactions on my behalf."
)

_LINK_RE = re.compile(r"^I am linking my wallet to account @(\S+) \(ID: ([^)\n]+)\)$", re.MULTILINE)
_TIMESTAMP_RE = re.compile(r"^Timestamp: (\d+)$", re.MULTILINE)
_NONCE_RE = re.compile(r"^Nonce: ([0-9a-f]+)$", re.MULTILINE)


def _clean_handle(handle: str) -> str:
    return handle.strip().lstrip("@")


@dataclass(frozen=True)
class Challenge:
    message: str
    challenge_hash: str
    identity: str
    handle: str
    issued_at_ms: int
    expires_at_ms: int


@dataclass(frozen=True)
class ParsedChallenge:
    identity: str
    handle: str
    timestamp_ms: int
    nonce: str


def render_challenge(app_name: str, identity: str, handle: str, timestamp_ms: int, nonce: str) -> str:
    return MESSAGE_TEMPLATE.format(
        app_name=app_name, identity=identity, handle=handle, timestamp=timestamp_ms, nonce=nonce
    )


def parse_challenge(message: str) -> ParsedChallenge:
    """Extract the embedded fields; raises ``InvalidChallengeError`` when any is missing."""
    link = _LINK_RE.search(message)
    timestamp = _TIMESTAMP_RE.search(message)
    nonce = _NONCE_RE.search(message)
    if not (link and timestamp and nonce):
        raise InvalidChallengeError("Message is not a wallet verification challenge")
    return ParsedChallenge(
        identity=link.group(2),
        handle=link.group(1),
        timestamp_ms=int(timestamp.group(1)),
        nonce=nonce.group(1),
    )


class ChallengeStore:
    """In-memory store of issued, unredeemed challenges keyed by hash.

    All mutations go through an ``asyncio.Lock``.  Expired entries are
    dropped on access and by ``cleanup_expired`` (run periodically by the
    server).  At capacity, the oldest challenge is evicted.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, max_challenges: int = 10_000) -> None:
        self._challenges: dict[str, Challenge] = {}
        self._lock = asyncio.Lock()
        self.ttl_seconds = ttl_seconds
        self._max = max_challenges

    async def add(self, challenge: Challenge) -> None:
        async with self._lock:
            if len(self._challenges) >= self._max:
                oldest = min(self._challenges, key=lambda k: self._challenges[k].issued_at_ms)
                del self._challenges[oldest]
            self._challenges[challenge.challenge_hash] = challenge

    async def consume(self, challenge_hash: str, now_ms: int) -> Challenge | None:
        """Remove and return the challenge if it exists and is still live."""
        async with self._lock:
            challenge = self._challenges.pop(challenge_hash, None)
        if challenge is None or now_ms > challenge.expires_at_ms:
            return None
        return challenge

    async def cleanup_expired(self, now_ms: int | None = None) -> int:
        """Remove all expired challenges.  Returns the number removed."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        async with self._lock:
            expired = [k for k, c in self._challenges.items() if now_ms >= c.expires_at_ms]
            for k in expired:
                del self._challenges[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._challenges)


class IdentityVerifier:
    """Issues challenges and turns valid signatures into verified links."""

    def __init__(
        self,
        links: LinkStore,
        challenges: ChallengeStore,
        *,
        app_name: str = "Delegex",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._links = links
        self._challenges = challenges
        self._app_name = app_name
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def ttl_ms(self) -> int:
        return self._challenges.ttl_seconds * 1000

    async def issue_challenge(self, identity: str, handle: str) -> Challenge:
        identity = identity.strip()
        handle = _clean_handle(handle)
        if not identity or ")" in identity or "\n" in identity:
            raise InvalidChallengeError(f"Invalid identity: {identity!r}")
        if not handle or any(c.isspace() for c in handle):
            raise InvalidChallengeError(f"Invalid handle: {handle!r}")

        now = self._now_ms()
        message = render_challenge(self._app_name, identity, handle, now, secrets.token_hex(16))
        challenge = Challenge(
            message=message,
            challenge_hash=keccak_text(message),
            identity=identity,
            handle=handle,
            issued_at_ms=now,
            expires_at_ms=now + self.ttl_ms,
        )
        await self._challenges.add(challenge)
        logger.debug("Issued challenge %s for identity %s", challenge.challenge_hash[:18], identity)
        return challenge

    async def verify(
        self, address: str, signature: str, message: str, identity: str, handle: str
    ) -> VerifiedLink:
        """Check the proof and record the link.

        Raises ``InvalidAddressError``, ``SignatureMismatchError``,
        ``InvalidChallengeError`` or ``ChallengeExpiredError``; nothing is
        written on failure.
        """
        address = validate_address(address)
        identity = identity.strip()
        handle = _clean_handle(handle)

        signer = recover_message_signer(message, signature)
        if signer.lower() != address.lower():
            raise SignatureMismatchError(
                f"Signature was produced by {signer}, not {address}"
            )

        parsed = parse_challenge(message)
        if parsed.identity != identity or parsed.handle.lower() != handle.lower():
            raise InvalidChallengeError("Challenge was issued for a different account")

        now = self._now_ms()
        if now - parsed.timestamp_ms > self.ttl_ms:
            raise ChallengeExpiredError(
                f"Challenge is {(now - parsed.timestamp_ms) // 1000}s old "
                f"(limit {self.ttl_ms // 1000}s); request a new one"
            )
        if parsed.timestamp_ms - now > MAX_FUTURE_SKEW_MS:
            raise InvalidChallengeError("Challenge timestamp is in the future")

        challenge_hash = keccak_text(message)
        if await self._challenges.consume(challenge_hash, now) is None:
            raise InvalidChallengeError("Challenge was not issued by this server or was already used")

        link = await self._links.supersede(
            identity=identity,
            handle=parsed.handle,
            wallet_address=address,
            signature=signature,
            challenge_hash=challenge_hash,
        )
        logger.info("Verified wallet %s for identity %s (@%s)", address, identity, parsed.handle)
        return link
