"""Conversions between database rows and API records."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from .db_types import (
    BuilderBlockSubmissionEntry,
    DeliveredPayloadEntry,
    ExecutionPayloadEntry,
)
from .types import BidTraceV2JSON, BidTraceV2WithTimestampJSON

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def payload_to_exec_payload_entry(payload: Mapping[str, Any]) -> ExecutionPayloadEntry:
    """Row for the execution payload of a builder block submission in JSON form."""
    message = payload["message"]
    execution_payload = payload["execution_payload"]
    return ExecutionPayloadEntry(
        slot=int(message["slot"]),
        proposer_pubkey=str(message["proposer_pubkey"]).lower(),
        block_hash=str(execution_payload["block_hash"]).lower(),
        version="bellatrix",
        payload=json.dumps(execution_payload, separators=(",", ":")),
    )


def delivered_payload_entry_to_bid_trace(entry: DeliveredPayloadEntry) -> BidTraceV2JSON:
    return BidTraceV2JSON(
        slot=entry.slot,
        parent_hash=entry.parent_hash,
        block_hash=entry.block_hash,
        builder_pubkey=entry.builder_pubkey,
        proposer_pubkey=entry.proposer_pubkey,
        proposer_fee_recipient=entry.proposer_fee_recipient,
        gas_limit=entry.gas_limit,
        gas_used=entry.gas_used,
        value=entry.value,
        num_tx=entry.num_tx,
        block_number=entry.block_number,
    )


def _since_epoch(moment: datetime) -> timedelta:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment - _EPOCH


def builder_submission_entry_to_bid_trace_with_timestamp(
    entry: BuilderBlockSubmissionEntry,
) -> BidTraceV2WithTimestampJSON:
    """Bid trace stamped with the receive time, or the insert time if unknown."""
    moment = entry.received_at if entry.received_at is not None else entry.inserted_at
    elapsed = _since_epoch(moment)
    return BidTraceV2WithTimestampJSON(
        slot=entry.slot,
        parent_hash=entry.parent_hash,
        block_hash=entry.block_hash,
        builder_pubkey=entry.builder_pubkey,
        proposer_pubkey=entry.proposer_pubkey,
        proposer_fee_recipient=entry.proposer_fee_recipient,
        gas_limit=entry.gas_limit,
        gas_used=entry.gas_used,
        value=entry.value,
        num_tx=entry.num_tx,
        block_number=entry.block_number,
        timestamp=elapsed // timedelta(seconds=1),
        timestamp_ms=elapsed // timedelta(milliseconds=1),
    )