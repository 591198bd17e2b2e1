"""Row types and query filters of the relay database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .common import InvalidPubkeyError, InvalidSignatureError, decode_hex

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

PUBKEY_LENGTH = 48
ADDRESS_LENGTH = 20
SIGNATURE_LENGTH = 96

EXECUTION_PAYLOAD_ENTRY_CSV_HEADER = [
    "id",
    "inserted_at",
    "slot",
    "proposer_pubkey",
    "block_hash",
    "version",
    "payload",
]


def _utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _fraction(moment: datetime) -> str:
    if not moment.microsecond:
        return ""
    return "." + f"{moment.microsecond:06d}".rstrip("0")


def _date_time(moment: datetime, separator: str) -> str:
    return (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}{separator}"
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}{_fraction(moment)}"
    )


def format_utc(moment: datetime) -> str:
    """Format as 'YYYY-MM-DD HH:MM:SS[.frac] +0000 UTC'."""
    return _date_time(_utc(moment), " ") + " +0000 UTC"


def format_rfc3339(moment: datetime) -> str:
    """Format as RFC 3339 in UTC with trimmed fractional seconds."""
    return _date_time(_utc(moment), "T") + "Z"


def _fixed_hex(value: str, length: int, error: type[Exception], what: str) -> str:
    try:
        raw = decode_hex(value)
    except ValueError as exc:
        raise error(f"invalid {what}: {exc}") from exc
    if len(raw) != length:
        raise error(f"invalid {what}: expected {length} bytes, got {len(raw)}")
    return "0x" + raw.hex()


def _pubkey(value: str) -> str:
    return _fixed_hex(value, PUBKEY_LENGTH, InvalidPubkeyError, "pubkey")


def _address(value: str) -> str:
    return _fixed_hex(value, ADDRESS_LENGTH, ValueError, "address")


def _signature(value: str) -> str:
    return _fixed_hex(value, SIGNATURE_LENGTH, InvalidSignatureError, "signature")


@dataclass
class GetPayloadsFilters:
    """Filters for delivered payloads; order_by_value is 1, -1 or 0 (by slot)."""

    slot: int = 0
    cursor: int = 0
    limit: int = 0
    block_hash: str = ""
    block_number: int = 0
    proposer_pubkey: str = ""
    builder_pubkey: str = ""
    order_by_value: int = 0


@dataclass
class GetBuilderSubmissionsFilters:
    slot: int = 0
    limit: int = 0
    block_hash: str = ""
    block_number: int = 0
    builder_pubkey: str = ""


@dataclass
class ValidatorRegistrationEntry:
    id: int = 0
    inserted_at: datetime = ZERO_TIME
    pubkey: str = ""
    fee_recipient: str = ""
    timestamp: int = 0
    gas_limit: int = 0
    signature: str = ""

    def to_signed_validator_registration(self) -> dict[str, Any]:
        """The registration in its signed JSON form; raises on malformed hex."""
        pubkey = _pubkey(self.pubkey)
        fee_recipient = _address(self.fee_recipient)
        signature = _signature(self.signature)
        return {
            "message": {
                "fee_recipient": fee_recipient,
                "gas_limit": str(self.gas_limit),
                "timestamp": str(self.timestamp),
                "pubkey": pubkey,
            },
            "signature": signature,
        }


def signed_validator_registration_to_entry(registration: dict[str, Any]) -> ValidatorRegistrationEntry:
    """Build a row from a signed registration in JSON form."""
    message = registration["message"]
    return ValidatorRegistrationEntry(
        pubkey=_pubkey(message["pubkey"]),
        fee_recipient=_address(message["fee_recipient"]),
        timestamp=int(message["timestamp"]),
        gas_limit=int(message["gas_limit"]),
        signature=_signature(registration["signature"]),
    )


@dataclass
class ExecutionPayloadEntry:
    id: int = 0
    inserted_at: datetime = ZERO_TIME
    slot: int = 0
    proposer_pubkey: str = ""
    block_hash: str = ""
    version: str = ""
    payload: str = ""

    def to_csv_record(self) -> list[str]:
        return [
            str(self.id),
            format_utc(self.inserted_at),
            str(self.slot),
            self.proposer_pubkey,
            self.block_hash,
            self.version,
            self.payload,
        ]

    def to_dict(self) -> dict[str, Any]:
        """The archive JSON form of the row."""
        return {
            "ID": self.id,
            "InsertedAt": format_rfc3339(self.inserted_at),
            "Slot": self.slot,
            "ProposerPubkey": self.proposer_pubkey,
            "BlockHash": self.block_hash,
            "Version": self.version,
            "Payload": self.payload,
        }


@dataclass
class BuilderBlockSubmissionEntry:
    id: int = 0
    inserted_at: datetime = ZERO_TIME
    received_at: datetime | None = None

    execution_payload_id: int | None = None

    sim_success: bool = False
    sim_error: str = ""

    signature: str = ""

    slot: int = 0
    parent_hash: str = ""
    block_hash: str = ""

    builder_pubkey: str = ""
    proposer_pubkey: str = ""
    proposer_fee_recipient: str = ""

    gas_used: int = 0
    gas_limit: int = 0

    num_tx: int = 0
    value: str = ""

    epoch: int = 0
    block_number: int = 0


@dataclass
class DeliveredPayloadEntry:
    id: int = 0
    inserted_at: datetime = ZERO_TIME

    signed_blinded_beacon_block: str | None = None

    slot: int = 0
    epoch: int = 0

    builder_pubkey: str = ""
    proposer_pubkey: str = ""
    proposer_fee_recipient: str = ""

    parent_hash: str = ""
    block_hash: str = ""
    block_number: int = 0

    gas_used: int = 0
    gas_limit: int = 0

    num_tx: int = 0
    value: str = ""


@dataclass
class BlockBuilderEntry:
    id: int = 0
    inserted_at: datetime = ZERO_TIME

    builder_pubkey: str = ""
    description: str = ""

    is_high_prio: bool = False
    is_blacklisted: bool = False

    last_submission_id: int | None = None
    last_submission_slot: int = 0

    num_submissions_total: int = 0
    num_submissions_simerror: int = 0

    num_sent_getpayload: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "inserted_at": format_rfc3339(self.inserted_at),
            "builder_pubkey": self.builder_pubkey,
            "description": self.description,
            "is_high_prio": self.is_high_prio,
            "is_blacklisted": self.is_blacklisted,
            "last_submission_id": {
                "Int64": self.last_submission_id or 0,
                "Valid": self.last_submission_id is not None,
            },
            "last_submission_slot": self.last_submission_slot,
            "num_submissions_total": self.num_submissions_total,
            "num_submissions_simerror": self.num_submissions_simerror,
            "num_sent_getpayload": self.num_sent_getpayload,
        }