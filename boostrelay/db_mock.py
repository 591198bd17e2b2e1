"""A database stand-in that stores nothing and finds nothing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .db_types import (
    BlockBuilderEntry,
    BuilderBlockSubmissionEntry,
    DeliveredPayloadEntry,
    ExecutionPayloadEntry,
    GetBuilderSubmissionsFilters,
    GetPayloadsFilters,
    ValidatorRegistrationEntry,
)
from .types import BidTraceV2


@dataclass
class MockDB:
    """Accepts every write and answers every query with nothing.

    Each call is noted in ``calls`` as a ``(method name, arguments)`` pair.
    """

    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def num_registered_validators(self) -> int:
        self._record("num_registered_validators")
        return 0

    def save_validator_registration(self, entry: ValidatorRegistrationEntry) -> None:
        self._record("save_validator_registration", entry)

    def get_validator_registration(self, pubkey: str) -> ValidatorRegistrationEntry | None:
        self._record("get_validator_registration", pubkey)
        return None

    def get_validator_registrations_for_pubkeys(self, pubkeys: list[str]) -> list[ValidatorRegistrationEntry]:
        self._record("get_validator_registrations_for_pubkeys", list(pubkeys))
        return []

    def get_latest_validator_registrations(self, timestamp_only: bool) -> list[ValidatorRegistrationEntry]:
        self._record("get_latest_validator_registrations", timestamp_only)
        return []

    def save_builder_block_submission(
        self, payload: Any, sim_error: Exception | None, received_at: datetime
    ) -> BuilderBlockSubmissionEntry | None:
        self._record("save_builder_block_submission", payload, sim_error, received_at)
        return None

    def get_execution_payload_entry_by_id(self, execution_payload_id: int) -> ExecutionPayloadEntry | None:
        self._record("get_execution_payload_entry_by_id", execution_payload_id)
        return None

    def get_execution_payload_entry_by_slot_pk_hash(
        self, slot: int, proposer_pubkey: str, block_hash: str
    ) -> ExecutionPayloadEntry | None:
        self._record("get_execution_payload_entry_by_slot_pk_hash", slot, proposer_pubkey, block_hash)
        return None

    def get_execution_payloads(self, id_first: int, id_last: int) -> list[ExecutionPayloadEntry]:
        self._record("get_execution_payloads", id_first, id_last)
        return []

    def delete_execution_payloads(self, id_first: int, id_last: int) -> None:
        self._record("delete_execution_payloads", id_first, id_last)

    def get_block_submission_entry(
        self, slot: int, proposer_pubkey: str, block_hash: str
    ) -> BuilderBlockSubmissionEntry | None:
        self._record("get_block_submission_entry", slot, proposer_pubkey, block_hash)
        return None

    def get_recent_delivered_payloads(self, filters: GetPayloadsFilters) -> list[DeliveredPayloadEntry]:
        self._record("get_recent_delivered_payloads", filters)
        return []

    def get_delivered_payloads(self, id_first: int, id_last: int) -> list[DeliveredPayloadEntry]:
        self._record("get_delivered_payloads", id_first, id_last)
        return []

    def get_num_delivered_payloads(self) -> int:
        self._record("get_num_delivered_payloads")
        return 0

    def get_builder_submissions(self, filters: GetBuilderSubmissionsFilters) -> list[BuilderBlockSubmissionEntry]:
        self._record("get_builder_submissions", filters)
        return []

    def get_builder_submissions_by_slots(self, slot_from: int, slot_to: int) -> list[BuilderBlockSubmissionEntry]:
        self._record("get_builder_submissions_by_slots", slot_from, slot_to)
        return []

    def save_delivered_payload(self, bid_trace: BidTraceV2, signed_blinded_beacon_block: Any) -> None:
        self._record("save_delivered_payload", bid_trace, signed_blinded_beacon_block)

    def upsert_block_builder_entry_after_submission(
        self, last_submission: BuilderBlockSubmissionEntry, is_error: bool
    ) -> None:
        self._record("upsert_block_builder_entry_after_submission", last_submission, is_error)

    def get_block_builders(self) -> list[BlockBuilderEntry]:
        self._record("get_block_builders")
        return []

    def get_block_builder_by_pubkey(self, pubkey: str) -> BlockBuilderEntry | None:
        self._record("get_block_builder_by_pubkey", pubkey)
        return None

    def set_block_builder_status(self, pubkey: str, is_high_prio: bool, is_blacklisted: bool) -> None:
        self._record("set_block_builder_status", pubkey, is_high_prio, is_blacklisted)

    def inc_block_builder_stats_after_get_header(self, slot: int, blockhash: str) -> None:
        self._record("inc_block_builder_stats_after_get_header", slot, blockhash)

    def inc_block_builder_stats_after_get_payload(self, builder_pubkey: str) -> None:
        self._record("inc_block_builder_stats_after_get_payload", builder_pubkey)