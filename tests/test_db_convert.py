import json
from datetime import datetime, timezone

from boostrelay.db_convert import (
    builder_submission_entry_to_bid_trace_with_timestamp,
    delivered_payload_entry_to_bid_trace,
    payload_to_exec_payload_entry,
)
from boostrelay.db_types import BuilderBlockSubmissionEntry, DeliveredPayloadEntry

PUBKEY = "0x93247F2209ABCACF57B75A51DAFAE777F9DD38BC7053D1AF526F220A7489A6D3A2753E5F3E8B1CFE39B56F43611DF74A"
BLOCK_HASH = "0xAB" + "00" * 31


def submission_payload():
    return {
        "message": {"slot": "123", "proposer_pubkey": PUBKEY, "value": "1"},
        "execution_payload": {
            "parent_hash": "0x" + "11" * 32,
            "block_hash": BLOCK_HASH,
            "block_number": "5",
            "transactions": ["0x01", "0x02"],
        },
        "signature": "0x" + "22" * 96,
    }


def test_payload_to_exec_payload_entry():
    payload = submission_payload()
    entry = payload_to_exec_payload_entry(payload)
    assert entry.slot == 123
    assert entry.proposer_pubkey == PUBKEY.lower()
    assert entry.block_hash == BLOCK_HASH.lower()
    assert entry.version == "bellatrix"
    assert json.loads(entry.payload) == payload["execution_payload"]
    assert ", " not in entry.payload


def test_delivered_payload_to_bid_trace():
    entry = DeliveredPayloadEntry(
        slot=10, parent_hash="0xp", block_hash="0xb", builder_pubkey="0xbu", proposer_pubkey="0xpr",
        proposer_fee_recipient="0xfr", gas_limit=30, gas_used=20, value="99", num_tx=4, block_number=8,
    )
    trace = delivered_payload_entry_to_bid_trace(entry)
    assert (trace.slot, trace.parent_hash, trace.block_hash) == (10, "0xp", "0xb")
    assert (trace.builder_pubkey, trace.proposer_pubkey, trace.proposer_fee_recipient) == ("0xbu", "0xpr", "0xfr")
    assert (trace.gas_limit, trace.gas_used, trace.value) == (30, 20, "99")
    assert (trace.num_tx, trace.block_number) == (4, 8)


def test_submission_uses_received_at():
    received = datetime(2022, 10, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
    entry = BuilderBlockSubmissionEntry(
        slot=5, value="7", inserted_at=datetime(2022, 1, 1, tzinfo=timezone.utc), received_at=received
    )
    trace = builder_submission_entry_to_bid_trace_with_timestamp(entry)
    assert trace.timestamp == int(received.timestamp())
    assert trace.timestamp_ms // 1000 == trace.timestamp
    assert trace.timestamp_ms % 1000 == 250
    assert trace.slot == 5 and trace.value == "7"


def test_submission_falls_back_to_inserted_at():
    inserted = datetime(2022, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    trace = builder_submission_entry_to_bid_trace_with_timestamp(
        BuilderBlockSubmissionEntry(inserted_at=inserted)
    )
    assert trace.timestamp == int(inserted.timestamp())
    assert trace.timestamp_ms == trace.timestamp * 1000


def test_naive_times_are_utc():
    naive = builder_submission_entry_to_bid_trace_with_timestamp(
        BuilderBlockSubmissionEntry(received_at=datetime(2022, 3, 4, 5, 6, 7))
    )
    aware = builder_submission_entry_to_bid_trace_with_timestamp(
        BuilderBlockSubmissionEntry(received_at=datetime(2022, 3, 4, 5, 6, 7, tzinfo=timezone.utc))
    )
    assert naive.timestamp == aware.timestamp
    assert naive.timestamp_ms == aware.timestamp_ms