"""Tests for delegex.protocol.types module."""

from __future__ import annotations

import pytest

from delegex.protocol.errors import ErrorKind, InvalidAddressError
from delegex.protocol.types import Call, DelegatedCallBatch, ExecutionOutcome, hex_quantity

TOKEN = "0x" + "a1" * 20
OTHER = "0x" + "b2" * 20


class TestCall:
    def test_target_is_checksummed(self):
        call = Call(target=TOKEN)
        assert call.target != TOKEN
        assert call.target.lower() == TOKEN
        assert call.normalized_target == TOKEN

    def test_calldata_normalized(self):
        assert Call(target=TOKEN, calldata="ABCD").calldata == "0xabcd"
        assert Call(target=TOKEN, calldata=b"\x01\x02").calldata == "0x0102"
        assert Call(target=TOKEN, calldata=None).calldata == "0x"  # type: ignore[arg-type]

    def test_odd_length_calldata_rejected(self):
        with pytest.raises(ValueError, match="not valid hex"):
            Call(target=TOKEN, calldata="0xabc")

    def test_negative_value_rejected(self):
        with pytest.raises(ValueError):
            Call(target=TOKEN, value=-1)

    def test_invalid_target(self):
        with pytest.raises(InvalidAddressError):
            Call(target="0x1234")

    def test_to_relay_omits_zero_value(self):
        wire = Call(target=TOKEN, calldata="0x12").to_relay()
        assert wire == {"to": Call(target=TOKEN).target, "data": "0x12"}

    def test_to_relay_hex_value(self):
        assert Call(target=TOKEN, value=1000).to_relay()["value"] == "0x3e8"


class TestBatch:
    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError, match="at least one call"):
            DelegatedCallBatch(calls=())

    def test_targets_are_normalized_set(self):
        batch = DelegatedCallBatch.of(Call(target=TOKEN), Call(target=OTHER), Call(target=TOKEN.upper().replace("0X", "0x")))
        assert batch.targets == frozenset({TOKEN, OTHER})
        assert len(batch) == 3

    def test_list_input_becomes_tuple(self):
        batch = DelegatedCallBatch(calls=[Call(target=TOKEN)])  # type: ignore[arg-type]
        assert isinstance(batch.calls, tuple)

    def test_equal_batches_compare_equal(self):
        a = DelegatedCallBatch.of(Call(target=TOKEN, calldata="0x01"))
        b = DelegatedCallBatch.of(Call(target=TOKEN.lower(), calldata="01"))
        assert a == b
        assert a.to_relay() == b.to_relay()


class TestOutcome:
    def test_succeeded(self):
        outcome = ExecutionOutcome.succeeded("0xbatch", ["0xtx"], grant_id="g1")
        assert outcome.success
        assert outcome.error_kind is None
        assert outcome.to_dict() == {
            "success": True,
            "relayBatchId": "0xbatch",
            "transactionHashes": ["0xtx"],
            "errorKind": None,
            "errorDetail": None,
            "grantId": "g1",
        }

    def test_failed(self):
        outcome = ExecutionOutcome.failed(ErrorKind.DUPLICATE_BATCH, "dup")
        assert not outcome.success
        assert outcome.to_dict()["errorKind"] == "duplicate_batch"
        assert outcome.transaction_hashes == []


def test_hex_quantity():
    assert hex_quantity(0) == "0x0"
    assert hex_quantity(11155931) == "0xaa39db"
    with pytest.raises(ValueError):
        hex_quantity(-1)
