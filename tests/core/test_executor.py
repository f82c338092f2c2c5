"""Tests for DelegatedExecutor against the in-memory relay."""

from __future__ import annotations

import asyncio

import pytest

from delegex.core.calls import build_approve_and_swap, build_transfer
from delegex.core.executor import (
    DelegatedExecutor,
    extract_transaction_hashes,
    normalize_submit_result,
)
from delegex.protocol.errors import ConfigurationError, ErrorKind, RelayRpcError, RelayTransportError
from delegex.relay.memory import PREPARE, STATUS, SUBMIT, InMemoryRelay

CHAIN_ID = 11155931


def _executor(resolver, key_manager, relay, **kwargs):
    return DelegatedExecutor(
        resolver=resolver,
        key_manager=key_manager,
        transport=relay,
        chain_id=CHAIN_ID,
        timeout=kwargs.pop("timeout", 1.0),
        **kwargs,
    )


@pytest.fixture
async def granted(grant_store, make_grant, wallet, key_manager, token_a):
    """A live P-256 grant over TOKEN_A for the test wallet."""
    grant = make_grant(wallet.address, key_manager.get_public_identifier(), grant_id="grant-1")
    await grant_store.append(grant)
    return grant


@pytest.fixture
def executor(resolver, key_manager, relay):
    return _executor(resolver, key_manager, relay)


@pytest.fixture
def batch(token_a, recipient):
    return build_transfer(recipient=recipient, amount=10**6, token=token_a)


class TestSuccess:
    async def test_executes(self, executor, relay, granted, batch, wallet):
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.success, outcome.error_detail
        assert outcome.relay_batch_id.startswith("0x")
        assert outcome.grant_id == "grant-1"
        assert len(outcome.transaction_hashes) == 1
        assert (relay.prepare_count, relay.submit_count) == (1, 1)

    async def test_prepare_request_shape(self, executor, relay, granted, batch, wallet, key_manager):
        await executor.execute(batch, wallet.address.lower())
        method, request = relay.requests[0]
        assert method == PREPARE
        assert request["from"] == wallet.address
        assert request["chainId"] == "0xaa39db"
        assert request["atomicRequired"] is True
        assert request["key"]["publicKey"] == key_manager.get_public_identifier()
        assert request["capabilities"]["permissions"] == {"id": "grant-1"}
        assert request["capabilities"]["meta"] == {"feePayer": wallet.address}

    async def test_fee_token_in_meta(self, resolver, key_manager, relay, granted, batch, wallet, token_b):
        executor = _executor(resolver, key_manager, relay, fee_token=token_b)
        await executor.execute(batch, wallet.address)
        assert relay.requests[0][1]["capabilities"]["meta"]["feeToken"] == token_b

    async def test_context_passed_verbatim(self, executor, relay, granted, batch, wallet):
        await executor.execute(batch, wallet.address)
        (_, prepare), (_, submit) = relay.requests
        assert submit["context"]["quote"]["intent"]["calls"] == prepare["calls"]

    async def test_list_response_shape(self, resolver, key_manager, granted, batch, wallet):
        relay = InMemoryRelay(response_shape="list")
        outcome = await _executor(resolver, key_manager, relay).execute(batch, wallet.address)
        assert outcome.success
        assert outcome.relay_batch_id is not None

    async def test_fee_signature_echoed(self, resolver, key_manager, granted, batch, wallet):
        relay = InMemoryRelay(fee_signature="0xfee")
        outcome = await _executor(resolver, key_manager, relay).execute(batch, wallet.address)
        assert outcome.success
        assert relay.requests[1][1]["capabilities"] == {"feeSignature": "0xfee"}

    async def test_secp256k1_key(self, grant_store, make_grant, wallet, k1_key_manager, relay, resolver, batch):
        await grant_store.append(
            make_grant(wallet.address, k1_key_manager.get_public_identifier(), key_type="secp256k1")
        )
        outcome = await _executor(resolver, k1_key_manager, relay).execute(batch, wallet.address)
        assert outcome.success, outcome.error_detail

    async def test_multi_target_batch(
        self, grant_store, make_grant, wallet, key_manager, relay, resolver, token_a, token_b, router, recipient
    ):
        await grant_store.append(
            make_grant(wallet.address, key_manager.get_public_identifier(), targets=[token_a, router])
        )
        swap = build_approve_and_swap(token_a, token_b, router, 100, 99, recipient, 1_900_000_000)
        outcome = await _executor(resolver, key_manager, relay).execute(swap, wallet.address)
        assert outcome.success


class TestDenied:
    async def test_no_grant_makes_no_relay_calls(self, executor, relay, batch, wallet):
        outcome = await executor.execute(batch, wallet.address)
        assert not outcome.success
        assert outcome.error_kind is ErrorKind.PERMISSION_DENIED
        assert "no_grant_for_wallet" in outcome.error_detail
        assert relay.total_calls == 0

    async def test_out_of_scope_target(self, executor, relay, granted, wallet, token_b, recipient):
        outcome = await executor.execute(build_transfer(recipient, 1, token_b), wallet.address)
        assert outcome.error_kind is ErrorKind.PERMISSION_DENIED
        assert "scope_insufficient" in outcome.error_detail
        assert relay.total_calls == 0

    async def test_grant_for_other_key_ignored(
        self, executor, relay, grant_store, make_grant, wallet, batch, k1_key_manager
    ):
        await grant_store.append(make_grant(wallet.address, k1_key_manager.get_public_identifier()))
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.PERMISSION_DENIED
        assert relay.total_calls == 0


class TestRelayFailures:
    async def test_second_execution_is_duplicate(self, executor, relay, granted, batch, wallet):
        first = await executor.execute(batch, wallet.address)
        second = await executor.execute(batch, wallet.address)
        assert first.success
        assert second.error_kind is ErrorKind.DUPLICATE_BATCH
        assert relay.submit_count == 2

    async def test_prepare_timeout_is_transient(self, resolver, key_manager, relay, granted, batch, wallet):
        relay.delays[PREPARE] = 0.5
        executor = _executor(resolver, key_manager, relay, timeout=0.05)
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.TRANSIENT_NETWORK_ERROR
        assert outcome.error_detail == "prepare: timed out"
        assert relay.submit_count == 0

    async def test_submit_timeout_is_ambiguous(self, resolver, key_manager, relay, granted, batch, wallet):
        relay.delays[SUBMIT] = 0.5
        executor = _executor(resolver, key_manager, relay, timeout=0.05)
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.AMBIGUOUS_OUTCOME
        assert relay.submit_count == 1

    async def test_submit_never_sent_is_transient(self, executor, relay, granted, batch, wallet):
        relay.fail_next(SUBMIT, RelayTransportError("connection refused", request_sent=False))
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.TRANSIENT_NETWORK_ERROR

    async def test_submit_lost_response_is_ambiguous(self, executor, relay, granted, batch, wallet):
        relay.fail_next(SUBMIT, RelayTransportError("read timed out", timed_out=True))
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.AMBIGUOUS_OUTCOME

    async def test_relay_rpc_error_classified(self, executor, relay, granted, batch, wallet):
        relay.fail_next(SUBMIT, RelayRpcError("spend limit exceeded", code=-32003))
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.PERMISSION_DENIED
        assert "spend limit" in outcome.error_detail

    async def test_prepare_rejected(self, executor, relay, granted, batch, wallet):
        relay.fail_next(PREPARE, RelayRpcError("unknown permission", code=-32003))
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.STALE_OR_MISMATCHED_GRANT
        assert relay.submit_count == 0

    async def test_malformed_prepare(self, executor, relay, granted, batch, wallet):
        relay.respond_next(PREPARE, {"context": {}})
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.UNKNOWN_RELAY_ERROR
        assert relay.submit_count == 0

    async def test_short_digest(self, executor, relay, granted, batch, wallet):
        relay.respond_next(PREPARE, {"digest": "0x1234", "context": {}})
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.UNKNOWN_RELAY_ERROR

    async def test_non_atomic_prepare(self, executor, relay, granted, batch, wallet):
        relay.respond_next(
            PREPARE, {"digest": "0x" + "00" * 32, "context": {}, "capabilities": {"atomic": False}}
        )
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.PARTIAL_EXECUTION_RISK
        assert relay.submit_count == 0

    async def test_partial_submit(self, executor, relay, granted, batch, wallet):
        relay.respond_next(SUBMIT, {"id": "0xabc", "status": 600})
        outcome = await executor.execute(batch, wallet.address)
        assert outcome.error_kind is ErrorKind.PARTIAL_EXECUTION_RISK
        assert outcome.relay_batch_id == "0xabc"


class TestConfiguration:
    async def test_relay_declares_other_key(self, executor, relay, granted, batch, wallet):
        relay.respond_next(
            PREPARE,
            {"digest": "0x" + "00" * 32, "context": {}, "key": {"type": "p256", "publicKey": "0x" + "99" * 64}},
        )
        with pytest.raises(ConfigurationError):
            await executor.execute(batch, wallet.address)
        assert relay.submit_count == 0

    async def test_grant_key_type_mismatch(self, grant_store, make_grant, wallet, key_manager, relay, resolver, batch):
        await grant_store.append(
            make_grant(wallet.address, key_manager.get_public_identifier(), key_type="secp256k1")
        )
        with pytest.raises(ConfigurationError):
            await _executor(resolver, key_manager, relay).execute(batch, wallet.address)
        assert relay.total_calls == 0


class TestStatus:
    async def test_fetch_status_after_execute(self, executor, relay, granted, batch, wallet):
        outcome = await executor.execute(batch, wallet.address)
        status = await executor.fetch_status(outcome.relay_batch_id)
        assert status.confirmed
        assert not status.pending
        assert len(status.transaction_hashes) == 1
        assert relay.submit_count == 1

    async def test_fetch_status_unknown_propagates(self, executor):
        with pytest.raises(RelayRpcError):
            await executor.fetch_status("0xdead")

    async def test_pending(self, executor, relay):
        relay.respond_next(STATUS, [{"status": 100}])
        status = await executor.fetch_status("0x01")
        assert status.pending
        assert status.to_dict()["batchId"] == "0x01"


class TestNormalizeSubmitResult:
    def test_object_and_list(self):
        assert normalize_submit_result({"id": "0x1"}).relay_batch_id == "0x1"
        assert normalize_submit_result([{"bundleId": "0x2"}]).relay_batch_id == "0x2"

    def test_missing_id_is_ambiguous(self):
        assert normalize_submit_result({}).error_kind is ErrorKind.AMBIGUOUS_OUTCOME
        assert normalize_submit_result([]).error_kind is ErrorKind.AMBIGUOUS_OUTCOME
        assert normalize_submit_result("ok").error_kind is ErrorKind.AMBIGUOUS_OUTCOME

    def test_reverted(self):
        outcome = normalize_submit_result({"id": "0x1", "status": 500})
        assert outcome.error_kind is ErrorKind.UNKNOWN_RELAY_ERROR

    def test_transaction_hashes(self):
        assert extract_transaction_hashes({"transactionHashes": ["0xa", None]}) == ["0xa"]
        assert extract_transaction_hashes({"receipts": [{"transactionHash": "0xb"}]}) == ["0xb"]
        assert extract_transaction_hashes({"hash": "0xc"}) == ["0xc"]
        assert extract_transaction_hashes({}) == []


async def test_concurrent_executions_submit_once(executor, relay, granted, batch, wallet):
    outcomes = await asyncio.gather(*(executor.execute(batch, wallet.address) for _ in range(3)))
    assert sum(1 for o in outcomes if o.success) == 1
    assert {o.error_kind for o in outcomes if not o.success} == {ErrorKind.DUPLICATE_BATCH}
