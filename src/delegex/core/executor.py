"""Delegated execution: resolve -> prepare -> sign -> submit -> classify.

``DelegatedExecutor.execute`` runs the steps strictly in order and performs
at most one submission per call.  Every expected failure becomes an
``ExecutionOutcome`` with an :class:`ErrorKind`; only ``ConfigurationError``
(and truly unexpected exceptions) propagate.

Nothing here retries.  ``transient_network_error`` outcomes may be retried
by the caller; ``ambiguous_outcome`` means the submit may have been applied
and must be checked (``fetch_status``) before any retry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from delegex.core.classify import classify_exception
from delegex.core.resolver import PermissionResolver
from delegex.core.session_key import SessionKeyManager
from delegex.protocol.address import checksum_address
from delegex.protocol.crypto import from_0x
from delegex.protocol.errors import (
    ConfigurationError,
    ErrorKind,
    NoMatchingGrantError,
    RelayError,
)
from delegex.protocol.types import DelegatedCallBatch, ExecutionOutcome, hex_quantity
from delegex.relay.base import RelayTransport

logger = logging.getLogger(__name__)

# EIP-5792 style batch status codes
STATUS_PENDING = 100
STATUS_CONFIRMED = 200
STATUS_OFFCHAIN_FAILURE = 400
STATUS_REVERTED = 500
STATUS_PARTIAL = 600

_ID_KEYS = ("id", "callsId", "bundleId", "hash", "transactionHash")


@dataclass
class BatchStatus:
    """Normalized ``wallet_getCallsStatus`` answer."""

    batch_id: str
    status: int | str | None
    transaction_hashes: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def pending(self) -> bool:
        return self.status in (STATUS_PENDING, "pending", None)

    @property
    def confirmed(self) -> bool:
        return self.status in (STATUS_CONFIRMED, "success", "confirmed", "CONFIRMED")

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "status": self.status,
            "pending": self.pending,
            "confirmed": self.confirmed,
            "transactionHashes": list(self.transaction_hashes),
        }


def _first(result: Any) -> Any:
    """The relay answers with either an object or a list whose first element is it."""
    if isinstance(result, list):
        return result[0] if result else None
    return result


def extract_transaction_hashes(result: dict[str, Any]) -> list[str]:
    hashes = result.get("transactionHashes")
    if isinstance(hashes, list):
        return [str(h) for h in hashes if h]
    receipts = result.get("receipts")
    if isinstance(receipts, list):
        found = [
            str(r.get("transactionHash"))
            for r in receipts
            if isinstance(r, dict) and r.get("transactionHash")
        ]
        if found:
            return found
    for key in ("transactionHash", "hash"):
        if result.get(key):
            return [str(result[key])]
    return []


def _is_partial(status: Any) -> bool:
    if status == STATUS_PARTIAL:
        return True
    return isinstance(status, str) and "partial" in status.lower()


def normalize_submit_result(result: Any, *, grant_id: str | None = None) -> ExecutionOutcome:
    """Turn a ``wallet_sendPreparedCalls`` result (either shape) into an outcome."""
    resp = _first(result)
    if not isinstance(resp, dict):
        return ExecutionOutcome.failed(
            ErrorKind.AMBIGUOUS_OUTCOME,
            f"relay accepted the submit but returned an unreadable result: {result!r}"[:300],
            grant_id=grant_id,
        )

    batch_id = next((str(resp[k]) for k in _ID_KEYS if resp.get(k)), None)
    status = resp.get("status")
    if _is_partial(status):
        return ExecutionOutcome.failed(
            ErrorKind.PARTIAL_EXECUTION_RISK,
            f"relay reports partial application (status {status})",
            grant_id=grant_id,
            relay_batch_id=batch_id,
        )
    if status in (STATUS_OFFCHAIN_FAILURE, STATUS_REVERTED):
        return ExecutionOutcome.failed(
            ErrorKind.UNKNOWN_RELAY_ERROR,
            f"relay reports batch failure (status {status})",
            grant_id=grant_id,
            relay_batch_id=batch_id,
        )
    if batch_id is None:
        return ExecutionOutcome.failed(
            ErrorKind.AMBIGUOUS_OUTCOME,
            "relay accepted the submit without a batch id; check before retrying",
            grant_id=grant_id,
        )
    return ExecutionOutcome.succeeded(batch_id, extract_transaction_hashes(resp), grant_id=grant_id)


class DelegatedExecutor:
    """Runs call batches under a stored grant through the relay.

    All collaborators are injected; the composition root decides whether
    *transport* is the real relay or the in-memory one.
    """

    def __init__(
        self,
        *,
        resolver: PermissionResolver,
        key_manager: SessionKeyManager,
        transport: RelayTransport,
        chain_id: int,
        timeout: float = 15.0,
        fee_token: str | None = None,
    ) -> None:
        self._resolver = resolver
        self._keys = key_manager
        self._transport = transport
        self._chain_id = chain_id
        self._timeout = timeout
        self._fee_token = fee_token

    def build_prepare_request(
        self, batch: DelegatedCallBatch, wallet_address: str, grant_id: str
    ) -> dict[str, Any]:
        handle = self._keys.get_signing_key()
        meta: dict[str, Any] = {"feePayer": wallet_address}
        if self._fee_token:
            meta["feeToken"] = self._fee_token
        return {
            "calls": batch.to_relay(),
            "chainId": hex_quantity(self._chain_id),
            "from": wallet_address,
            "atomicRequired": True,
            "key": handle.relay_reference(),
            "capabilities": {"meta": meta, "permissions": {"id": grant_id}},
        }

    async def _bounded(self, coro: Any) -> Any:
        return await asyncio.wait_for(coro, timeout=self._timeout)

    def _check_declared_key(self, declared: Any) -> None:
        """The relay-declared key must be the one this deployment holds."""
        if not isinstance(declared, dict):
            return
        handle = self._keys.get_signing_key()
        key_type = declared.get("type")
        if key_type is not None and key_type != handle.key_type.value:
            raise ConfigurationError(
                f"Relay declared key type {key_type!r} but the backend key is {handle.key_type.value}"
            )
        public_key = declared.get("publicKey")
        if public_key is not None and str(public_key).lower() != handle.public_id.lower():
            raise ConfigurationError("Relay declared a different backend public key")

    async def execute(self, batch: DelegatedCallBatch, wallet_address: str) -> ExecutionOutcome:
        """Execute *batch* on behalf of *wallet_address*."""
        wallet = checksum_address(wallet_address)
        handle = self._keys.get_signing_key()

        # 1. Resolve
        try:
            grant = await self._resolver.resolve(
                wallet, batch.targets, backend_key_public_id=handle.public_id
            )
        except NoMatchingGrantError as exc:
            logger.info("Execution denied for %s: %s", wallet, exc)
            return ExecutionOutcome.failed(ErrorKind.PERMISSION_DENIED, str(exc))
        if not grant.covers(batch.targets):
            return ExecutionOutcome.failed(
                ErrorKind.PERMISSION_DENIED,
                "batch targets fall outside the resolved grant",
                grant_id=grant.id,
            )
        if grant.backend_key_type != handle.key_type.value:
            raise ConfigurationError(
                f"Grant {grant.id} names a {grant.backend_key_type} key but the backend key is "
                f"{handle.key_type.value}"
            )

        # 2. Prepare
        request = self.build_prepare_request(batch, wallet, grant.id)
        try:
            prepared = await self._bounded(self._transport.prepare_calls(request))
        except (RelayError, asyncio.TimeoutError) as exc:
            kind = classify_exception(exc, phase="prepare")
            logger.warning("Prepare failed for %s (%s): %s", wallet, kind.value, exc)
            return ExecutionOutcome.failed(kind, f"prepare: {str(exc) or 'timed out'}", grant_id=grant.id)

        if not isinstance(prepared, dict) or not prepared.get("digest") or "context" not in prepared:
            return ExecutionOutcome.failed(
                ErrorKind.UNKNOWN_RELAY_ERROR,
                "prepare response is missing digest or context",
                grant_id=grant.id,
            )
        capabilities = prepared.get("capabilities") or {}
        if prepared.get("atomicRequired") is False or capabilities.get("atomic") is False:
            return ExecutionOutcome.failed(
                ErrorKind.PARTIAL_EXECUTION_RISK,
                "relay would not guarantee atomic execution; nothing was submitted",
                grant_id=grant.id,
            )

        # 3. Sign
        self._check_declared_key(prepared.get("key"))
        try:
            digest = from_0x(str(prepared["digest"]))
        except ValueError:
            return ExecutionOutcome.failed(
                ErrorKind.UNKNOWN_RELAY_ERROR, "prepare returned a non-hex digest", grant_id=grant.id
            )
        if len(digest) != 32:
            return ExecutionOutcome.failed(
                ErrorKind.UNKNOWN_RELAY_ERROR,
                f"prepare returned a {len(digest)}-byte digest",
                grant_id=grant.id,
            )
        signature = self._keys.sign(digest)

        # 4. Submit
        submit: dict[str, Any] = {
            "context": prepared["context"],
            "key": prepared.get("key") or handle.relay_reference(),
            "signature": signature,
        }
        if capabilities.get("feeSignature"):
            submit["capabilities"] = {"feeSignature": capabilities["feeSignature"]}
        try:
            result = await self._bounded(self._transport.send_prepared_calls(submit))
        except (RelayError, asyncio.TimeoutError) as exc:
            # 5. Classify
            kind = classify_exception(exc, phase="submit")
            logger.warning("Submit failed for %s (%s): %s", wallet, kind.value, exc)
            return ExecutionOutcome.failed(kind, f"submit: {str(exc) or 'timed out'}", grant_id=grant.id)

        outcome = normalize_submit_result(result, grant_id=grant.id)
        if outcome.success:
            logger.info(
                "Executed %d call(s) for %s under grant %s: batch %s",
                len(batch),
                wallet,
                grant.id[:18],
                outcome.relay_batch_id,
            )
        else:
            logger.warning("Submit for %s finished as %s", wallet, outcome.error_kind.value)
        return outcome

    async def fetch_status(self, batch_id: str) -> BatchStatus:
        """Read-only status lookup; never resubmits.  Relay errors propagate."""
        raw = await self._bounded(self._transport.get_calls_status(batch_id))
        resp = _first(raw)
        if not isinstance(resp, dict):
            resp = {}
        return BatchStatus(
            batch_id=batch_id,
            status=resp.get("status"),
            transaction_hashes=extract_transaction_hashes(resp),
            raw=resp,
        )
