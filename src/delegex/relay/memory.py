"""In-process relay with the same contract as the JSON-RPC relay.

Used by the test suite and by ``DELEGEX_RELAY_URL=memory://`` for local
demos.  It behaves like the real relay where the engine can observe it:

* digests are a deterministic hash of the prepare request, so the same
  batch from the same wallet and key always yields the same digest;
* the submitted ``context`` must equal the prepared one exactly;
* signatures are verified against the declared key;
* a digest can be submitted once; the second submit is rejected as a
  duplicate call batch.

Counters (``prepare_count``, ``submit_count``, ``status_count``) let tests
assert how many relay round trips happened.  ``fail_next``,
``respond_next`` and ``delays`` inject faults.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict, deque
from typing import Any

from eth_utils import keccak

from delegex.protocol.crypto import from_0x, recover_digest_secp256k1, to_0x, verify_digest_p256
from delegex.protocol.errors import RelayRpcError
from delegex.protocol.types import KeyType
from delegex.relay.base import RelayTransport

logger = logging.getLogger(__name__)

PREPARE = "wallet_prepareCalls"
SUBMIT = "wallet_sendPreparedCalls"
STATUS = "wallet_getCallsStatus"

_INVALID_PARAMS = -32602
_EXECUTION_ERROR = -32003


def _canonical(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode()


class InMemoryRelay(RelayTransport):
    """Deterministic relay double.

    *response_shape* selects how ``wallet_sendPreparedCalls`` answers:
    ``"object"`` (``{"id": ..., "receipts": [...]}``) or ``"list"``
    (the same object wrapped in a one-element list).
    *fee_signature* makes prepare return a fee capability that submit must
    echo back.
    """

    def __init__(self, *, response_shape: str = "object", fee_signature: str | None = None) -> None:
        if response_shape not in ("object", "list"):
            raise ValueError(f"response_shape must be 'object' or 'list', got {response_shape!r}")
        self.response_shape = response_shape
        self.fee_signature = fee_signature
        self.prepare_count = 0
        self.submit_count = 0
        self.status_count = 0
        self.requests: list[tuple[str, Any]] = []
        self.delays: dict[str, float] = {}
        self._faults: dict[str, deque[BaseException]] = defaultdict(deque)
        self._canned: dict[str, deque[Any]] = defaultdict(deque)
        self._prepared: dict[str, dict[str, Any]] = {}
        self._consumed: set[str] = set()
        self._batches: dict[str, dict[str, Any]] = {}

    # -- fault injection -----------------------------------------------------

    def fail_next(self, method: str, exc: BaseException) -> None:
        """Raise *exc* on the next call to *method*."""
        self._faults[method].append(exc)

    def respond_next(self, method: str, payload: Any) -> None:
        """Return *payload* verbatim from the next call to *method*."""
        self._canned[method].append(payload)

    @property
    def total_calls(self) -> int:
        return self.prepare_count + self.submit_count + self.status_count

    @property
    def consumed_digests(self) -> frozenset[str]:
        return frozenset(self._consumed)

    async def _enter(self, method: str, params: Any) -> Any:
        self.requests.append((method, params))
        delay = self.delays.get(method)
        if delay:
            await asyncio.sleep(delay)
        if self._faults[method]:
            raise self._faults[method].popleft()
        if self._canned[method]:
            return self._canned[method].popleft()
        return None

    # -- relay methods -------------------------------------------------------

    async def prepare_calls(self, request: dict[str, Any]) -> dict[str, Any]:
        self.prepare_count += 1
        canned = await self._enter(PREPARE, request)
        if canned is not None:
            return canned

        calls = request.get("calls") or []
        key = request.get("key") or {}
        if not calls:
            raise RelayRpcError("calls must not be empty", code=_INVALID_PARAMS)
        if not key.get("publicKey") or key.get("type") not in {k.value for k in KeyType}:
            raise RelayRpcError("invalid key reference", code=_INVALID_PARAMS)
        if request.get("atomicRequired") is not True:
            raise RelayRpcError("only atomic batches are supported", code=_INVALID_PARAMS)

        permission_id = ((request.get("capabilities") or {}).get("permissions") or {}).get("id")
        digest = to_0x(
            keccak(
                _canonical(
                    {
                        "calls": calls,
                        "chainId": request.get("chainId"),
                        "from": str(request.get("from", "")).lower(),
                        "key": key.get("publicKey", "").lower(),
                        "permission": permission_id,
                    }
                )
            )
        )
        context = {
            "quote": {"digest": digest, "chainId": request.get("chainId"), "intent": {"calls": calls}},
            "preCall": {"permissionId": permission_id},
        }
        self._prepared[digest] = {"context": context, "key": dict(key)}

        response: dict[str, Any] = {"digest": digest, "context": context, "key": dict(key)}
        if self.fee_signature:
            response["capabilities"] = {"feeSignature": self.fee_signature}
        return response

    async def send_prepared_calls(self, request: dict[str, Any]) -> Any:
        self.submit_count += 1
        canned = await self._enter(SUBMIT, request)
        if canned is not None:
            return canned

        context = request.get("context")
        digest = None
        if isinstance(context, dict):
            digest = (context.get("quote") or {}).get("digest")
        prepared = self._prepared.get(digest) if digest else None
        if prepared is None:
            raise RelayRpcError("invalid precall: unknown context", code=_EXECUTION_ERROR)
        if context != prepared["context"]:
            raise RelayRpcError("invalid precall: context mismatch", code=_EXECUTION_ERROR)

        key = request.get("key") or {}
        if (key.get("publicKey") or "").lower() != prepared["key"]["publicKey"].lower():
            raise RelayRpcError("invalid precall: permission mismatch for key", code=_EXECUTION_ERROR)
        if not self._signature_valid(key, digest, request.get("signature") or ""):
            raise RelayRpcError("unauthorized: signature does not match key", code=_EXECUTION_ERROR)
        if self.fee_signature:
            fee = ((request.get("capabilities") or {}).get("feeSignature"))
            if fee != self.fee_signature:
                raise RelayRpcError("invalid precall: missing fee signature", code=_EXECUTION_ERROR)

        if digest in self._consumed:
            raise RelayRpcError("duplicate call batch: already executed", code=_EXECUTION_ERROR)
        self._consumed.add(digest)

        raw = from_0x(digest)
        batch_id = to_0x(keccak(raw + b"\x01"))
        tx_hash = to_0x(keccak(raw + b"\x02"))
        receipts = [{"transactionHash": tx_hash, "status": "0x1"}]
        self._batches[batch_id] = {"id": batch_id, "status": 200, "receipts": receipts}
        logger.debug("In-memory relay executed batch %s", batch_id[:18])
        result = {"id": batch_id, "receipts": [dict(r) for r in receipts]}
        return [result] if self.response_shape == "list" else result

    async def get_calls_status(self, batch_id: str) -> dict[str, Any]:
        self.status_count += 1
        canned = await self._enter(STATUS, batch_id)
        if canned is not None:
            return canned
        status = self._batches.get(batch_id)
        if status is None:
            raise RelayRpcError(f"unknown bundle id {batch_id}", code=_INVALID_PARAMS)
        return dict(status)

    @staticmethod
    def _signature_valid(key: dict[str, Any], digest: str, signature: str) -> bool:
        raw = from_0x(digest)
        if key.get("type") == KeyType.P256.value:
            return verify_digest_p256(key.get("publicKey", ""), raw, signature)
        signer = recover_digest_secp256k1(raw, signature)
        return signer is not None and signer.lower() == str(key.get("publicKey", "")).lower()
