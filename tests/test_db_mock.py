from datetime import datetime, timezone

import pytest

from boostrelay.db_mock import MockDB
from boostrelay.db_types import (
    BuilderBlockSubmissionEntry,
    GetBuilderSubmissionsFilters,
    GetPayloadsFilters,
    ValidatorRegistrationEntry,
)
from boostrelay.types import BidTraceV2


@pytest.fixture
def db():
    return MockDB()


def test_counts_are_zero(db):
    assert db.num_registered_validators() == 0
    assert db.get_num_delivered_payloads() == 0


def test_list_queries_are_empty(db):
    assert db.get_validator_registrations_for_pubkeys(["0xaa"]) == []
    assert db.get_latest_validator_registrations(True) == []
    assert db.get_execution_payloads(1, 10) == []
    assert db.get_recent_delivered_payloads(GetPayloadsFilters(limit=5)) == []
    assert db.get_delivered_payloads(1, 10) == []
    assert db.get_builder_submissions(GetBuilderSubmissionsFilters(slot=1)) == []
    assert db.get_builder_submissions_by_slots(1, 2) == []
    assert db.get_block_builders() == []


def test_single_lookups_find_nothing(db):
    assert db.get_validator_registration("0xaa") is None
    assert db.get_execution_payload_entry_by_id(1) is None
    assert db.get_execution_payload_entry_by_slot_pk_hash(1, "0xaa", "0xbb") is None
    assert db.get_block_submission_entry(1, "0xaa", "0xbb") is None
    assert db.get_block_builder_by_pubkey("0xaa") is None


def test_writes_return_nothing(db):
    now = datetime(2022, 1, 1, tzinfo=timezone.utc)
    trace = BidTraceV2(
        slot=1, parent_hash="0x", block_hash="0x", builder_pubkey="0x", proposer_pubkey="0x",
        proposer_fee_recipient="0x", gas_limit=1, gas_used=1, value=1,
    )
    assert db.save_validator_registration(ValidatorRegistrationEntry()) is None
    assert db.save_builder_block_submission({}, None, now) is None
    assert db.delete_execution_payloads(1, 2) is None
    assert db.save_delivered_payload(trace, {}) is None
    assert db.upsert_block_builder_entry_after_submission(BuilderBlockSubmissionEntry(), True) is None
    assert db.set_block_builder_status("0xaa", True, False) is None
    assert db.inc_block_builder_stats_after_get_header(1, "0xbb") is None
    assert db.inc_block_builder_stats_after_get_payload("0xaa") is None


def test_writes_leave_queries_empty(db):
    db.save_validator_registration(ValidatorRegistrationEntry(pubkey="0xaa"))
    assert db.num_registered_validators() == 0
    assert db.get_validator_registration("0xaa") is None