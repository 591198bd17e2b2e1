"""Storage of registrations, bids, payloads and builders in the relay database."""

from __future__ import annotations

import dataclasses
import json
import os
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import DateTime, bindparam, create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.sql.elements import TextClause

from .common import SLOTS_PER_EPOCH
from .db_convert import payload_to_exec_payload_entry
from .db_types import (
    BlockBuilderEntry,
    BuilderBlockSubmissionEntry,
    DeliveredPayloadEntry,
    ExecutionPayloadEntry,
    GetBuilderSubmissionsFilters,
    GetPayloadsFilters,
    ValidatorRegistrationEntry,
)
from .migrations import apply_migrations
from .tables import Tables, table_names
from .types import BidTraceV2

QUERY_TIMEOUT_MS = 3000
MAX_OPEN_CONNECTIONS = 50
MAX_IDLE_CONNECTIONS = 10

_BOOL_COLUMNS = frozenset({"sim_success", "is_high_prio", "is_blacklisted"})
_TIME_COLUMNS = frozenset({"inserted_at", "received_at"})

_REGISTRATION_FIELDS = "pubkey, fee_recipient, timestamp, gas_limit, signature"
_SUBMISSION_FIELDS = (
    "id, inserted_at, received_at, execution_payload_id, sim_success, sim_error, signature, slot, "
    "parent_hash, block_hash, builder_pubkey, proposer_pubkey, proposer_fee_recipient, gas_used, "
    "gas_limit, num_tx, value, epoch, block_number"
)
_SUBMISSION_SUMMARY_FIELDS = (
    "id, inserted_at, received_at, slot, epoch, builder_pubkey, proposer_pubkey, proposer_fee_recipient, "
    "parent_hash, block_hash, block_number, num_tx, value, gas_used, gas_limit"
)
_DELIVERED_FIELDS = (
    "id, inserted_at, slot, epoch, builder_pubkey, proposer_pubkey, proposer_fee_recipient, "
    "parent_hash, block_hash, block_number, num_tx, value, gas_used, gas_limit"
)
_EXECUTION_PAYLOAD_FIELDS = "id, inserted_at, slot, proposer_pubkey, block_hash, version, payload"
_BLOCK_BUILDER_FIELDS = (
    "id, inserted_at, builder_pubkey, description, is_high_prio, is_blacklisted, last_submission_id, "
    "last_submission_slot, num_submissions_total, num_submissions_simerror, num_sent_getpayload"
)

_E = TypeVar("_E")


def _db_time(moment: datetime) -> datetime:
    """Naive UTC, as stored in timestamp columns."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _to_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _numeric_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return str(int(value)) if value == value.to_integral_value() else str(value)
    return str(value)


def _row_to(cls: type[_E], row: Any) -> _E:
    values: dict[str, Any] = {}
    for key, value in row._mapping.items():
        if key in _TIME_COLUMNS:
            value = _to_datetime(value)
        elif key in _BOOL_COLUMNS:
            value = bool(value)
        elif key == "value":
            value = _numeric_text(value)
        values[key] = value
    return cls(**values)


def _stmt(sql: str, *datetime_params: str) -> TextClause:
    statement = text(sql)
    if datetime_params:
        statement = statement.bindparams(*(bindparam(name, type_=DateTime()) for name in datetime_params))
    return statement


def _start_of_day(day: str | date) -> datetime:
    if isinstance(day, datetime):
        day = day.date()
    elif isinstance(day, str):
        day = date.fromisoformat(day)
    return datetime.combine(day, time())


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def _hex(value: Any) -> str:
    return str(value).lower()


class DatabaseService:
    """Relay storage on top of an SQLAlchemy engine."""

    def __init__(self, engine: Engine, tables: Tables | None = None) -> None:
        self.engine = engine
        self.tables = tables if tables is not None else table_names()

    def close(self) -> None:
        self.engine.dispose()

    # -- helpers -------------------------------------------------------------

    def _all(self, statement: Any, params: Mapping[str, Any] | None = None, *, timeout: bool = False) -> list[Any]:
        with self.engine.begin() as conn:
            if timeout and self.engine.dialect.name == "postgresql":
                conn.exec_driver_sql(f"SET LOCAL statement_timeout = {QUERY_TIMEOUT_MS}")
            return list(conn.execute(statement, dict(params or {})).all())

    def _first(self, statement: Any, params: Mapping[str, Any] | None = None) -> Any:
        rows = self._all(statement, params)
        return rows[0] if rows else None

    def _execute(self, statement: Any, params: Mapping[str, Any] | None = None) -> None:
        with self.engine.begin() as conn:
            conn.execute(statement, dict(params or {}))

    def _scalar(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        row = self._first(text(sql), params)
        return int(row[0])

    # -- validator registrations ---------------------------------------------

    def num_registered_validators(self) -> int:
        """Number of distinct pubkeys that have registered."""
        table = self.tables.validator_registration
        return self._scalar(f"SELECT COUNT(*) FROM (SELECT DISTINCT pubkey FROM {table}) AS temp")

    def num_validator_registration_rows(self) -> int:
        return self._scalar(f"SELECT COUNT(*) FROM {self.tables.validator_registration}")

    def save_validator_registration(self, entry: ValidatorRegistrationEntry) -> None:
        """Store a registration unless it is older than, or equivalent to, the latest one."""
        table = self.tables.validator_registration
        sql = f"""WITH latest_registration AS (
            SELECT {_REGISTRATION_FIELDS} FROM {table} WHERE pubkey=:pubkey ORDER BY timestamp DESC LIMIT 1
        )
        INSERT INTO {table} ({_REGISTRATION_FIELDS})
        SELECT :pubkey, :fee_recipient, :timestamp, :gas_limit, :signature
        WHERE NOT EXISTS (
            SELECT 1 FROM latest_registration WHERE pubkey=:pubkey AND :timestamp <= latest_registration.timestamp
            OR (:fee_recipient = latest_registration.fee_recipient AND :gas_limit = latest_registration.gas_limit)
        )"""
        self._execute(
            text(sql),
            {
                "pubkey": entry.pubkey,
                "fee_recipient": entry.fee_recipient,
                "timestamp": entry.timestamp,
                "gas_limit": entry.gas_limit,
                "signature": entry.signature,
            },
        )

    def get_validator_registration(self, pubkey: str) -> ValidatorRegistrationEntry | None:
        """The latest registration of the pubkey, or None."""
        sql = (
            f"SELECT {_REGISTRATION_FIELDS} FROM {self.tables.validator_registration} "
            "WHERE pubkey=:pubkey ORDER BY timestamp DESC LIMIT 1"
        )
        row = self._first(text(sql), {"pubkey": pubkey})
        return _row_to(ValidatorRegistrationEntry, row) if row is not None else None

    def _latest_registrations_sql(self, columns: str, where: str = "") -> str:
        return (
            f"SELECT {columns} FROM ("
            f"SELECT {_REGISTRATION_FIELDS}, "
            "ROW_NUMBER() OVER (PARTITION BY pubkey ORDER BY timestamp DESC) AS row_rank "
            f"FROM {self.tables.validator_registration} {where}"
            ") AS ranked WHERE row_rank = 1 ORDER BY pubkey"
        )

    def get_validator_registrations_for_pubkeys(self, pubkeys: Iterable[str]) -> list[ValidatorRegistrationEntry]:
        """The latest registration of each of the pubkeys that has one."""
        keys = list(pubkeys)
        if not keys:
            raise ValueError("empty pubkey list")
        sql = self._latest_registrations_sql(_REGISTRATION_FIELDS, "WHERE pubkey IN :pubkeys")
        statement = text(sql).bindparams(bindparam("pubkeys", expanding=True))
        return [_row_to(ValidatorRegistrationEntry, row) for row in self._all(statement, {"pubkeys": keys})]

    def get_latest_validator_registrations(self, timestamp_only: bool = False) -> list[ValidatorRegistrationEntry]:
        """The latest registration of every pubkey, ordered by pubkey."""
        columns = "pubkey, timestamp" if timestamp_only else _REGISTRATION_FIELDS
        rows = self._all(text(self._latest_registrations_sql(columns)))
        return [_row_to(ValidatorRegistrationEntry, row) for row in rows]

    # -- builder submissions -------------------------------------------------

    def save_builder_block_submission(
        self, payload: Mapping[str, Any], sim_error: BaseException | str | None, received_at: datetime
    ) -> BuilderBlockSubmissionEntry:
        """Store a builder block submission and its execution payload."""
        exec_entry = payload_to_exec_payload_entry(payload)
        message = payload["message"]
        execution_payload = payload["execution_payload"]

        insert_payload = text(
            f"INSERT INTO {self.tables.execution_payload} "
            "(slot, proposer_pubkey, block_hash, version, payload) VALUES "
            "(:slot, :proposer_pubkey, :block_hash, :version, :payload) "
            "ON CONFLICT (slot, proposer_pubkey, block_hash) DO UPDATE SET slot=:slot "
            "RETURNING id"
        )
        insert_submission = _stmt(
            f"INSERT INTO {self.tables.builder_block_submission} "
            "(received_at, execution_payload_id, sim_success, sim_error, signature, slot, parent_hash, "
            "block_hash, builder_pubkey, proposer_pubkey, proposer_fee_recipient, gas_used, gas_limit, "
            "num_tx, value, epoch, block_number) VALUES "
            "(:received_at, :execution_payload_id, :sim_success, :sim_error, :signature, :slot, :parent_hash, "
            ":block_hash, :builder_pubkey, :proposer_pubkey, :proposer_fee_recipient, :gas_used, :gas_limit, "
            ":num_tx, :value, :epoch, :block_number) RETURNING id",
            "received_at",
        )

        slot = int(message["slot"])
        entry = BuilderBlockSubmissionEntry(
            received_at=_db_time(received_at),
            sim_success=sim_error is None,
            sim_error="" if sim_error is None else str(sim_error),
            signature=_hex(payload["signature"]),
            slot=slot,
            block_hash=_hex(execution_payload["block_hash"]),
            parent_hash=_hex(execution_payload["parent_hash"]),
            builder_pubkey=_hex(message["builder_pubkey"]),
            proposer_pubkey=_hex(message["proposer_pubkey"]),
            proposer_fee_recipient=_hex(message["proposer_fee_recipient"]),
            gas_used=int(message["gas_used"]),
            gas_limit=int(message["gas_limit"]),
            num_tx=len(execution_payload.get("transactions") or []),
            value=str(int(message["value"])),
            epoch=slot // SLOTS_PER_EPOCH,
            block_number=int(execution_payload["block_number"]),
        )

        with self.engine.begin() as conn:
            exec_entry.id = int(
                conn.execute(
                    insert_payload,
                    {
                        "slot": exec_entry.slot,
                        "proposer_pubkey": exec_entry.proposer_pubkey,
                        "block_hash": exec_entry.block_hash,
                        "version": exec_entry.version,
                        "payload": exec_entry.payload,
                    },
                ).scalar_one()
            )
            entry.execution_payload_id = exec_entry.id
            params = {
                f.name: getattr(entry, f.name)
                for f in dataclasses.fields(entry)
                if f.name not in ("id", "inserted_at")
            }
            entry.id = int(conn.execute(insert_submission, params).scalar_one())
        return entry

    def get_block_submission_entry(
        self, slot: int, proposer_pubkey: str, block_hash: str
    ) -> BuilderBlockSubmissionEntry | None:
        sql = (
            f"SELECT {_SUBMISSION_FIELDS} FROM {self.tables.builder_block_submission} "
            "WHERE slot=:slot AND proposer_pubkey=:proposer_pubkey AND block_hash=:block_hash "
            "ORDER BY builder_pubkey ASC LIMIT 1"
        )
        row = self._first(
            text(sql), {"slot": slot, "proposer_pubkey": proposer_pubkey, "block_hash": block_hash}
        )
        return _row_to(BuilderBlockSubmissionEntry, row) if row is not None else None

    def get_builder_submissions(self, filters: GetBuilderSubmissionsFilters) -> list[BuilderBlockSubmissionEntry]:
        """Successfully simulated submissions, newest first; no limit when filtering by slot or block."""
        params = {
            "limit": filters.limit,
            "slot": filters.slot,
            "block_hash": filters.block_hash,
            "block_number": filters.block_number,
            "builder_pubkey": filters.builder_pubkey,
        }
        limit = "LIMIT :limit"
        conditions = ["sim_success = true"]
        if filters.slot > 0:
            conditions.append("slot = :slot")
            limit = ""
        if filters.block_number > 0:
            conditions.append("block_number = :block_number")
            limit = ""
        if filters.block_hash:
            conditions.append("block_hash = :block_hash")
        if filters.builder_pubkey:
            conditions.append("builder_pubkey = :builder_pubkey")
        where = "WHERE " + " AND ".join(conditions)

        sql = (
            f"SELECT {_SUBMISSION_SUMMARY_FIELDS} FROM {self.tables.builder_block_submission} {where} "
            f"ORDER BY slot DESC, inserted_at DESC {limit}"
        )
        used = {k: v for k, v in params.items() if f":{k}" in sql}
        rows = self._all(text(sql), used, timeout=True)
        return [_row_to(BuilderBlockSubmissionEntry, row) for row in rows]

    def get_builder_submissions_by_slots(self, slot_from: int, slot_to: int) -> list[BuilderBlockSubmissionEntry]:
        sql = (
            f"SELECT {_SUBMISSION_SUMMARY_FIELDS} FROM {self.tables.builder_block_submission} "
            "WHERE sim_success = true AND slot >= :slot_from AND slot <= :slot_to "
            "ORDER BY slot ASC, inserted_at ASC"
        )
        rows = self._all(text(sql), {"slot_from": slot_from, "slot_to": slot_to})
        return [_row_to(BuilderBlockSubmissionEntry, row) for row in rows]

    # -- execution payloads --------------------------------------------------

    def get_execution_payload_entry_by_id(self, execution_payload_id: int) -> ExecutionPayloadEntry | None:
        sql = f"SELECT {_EXECUTION_PAYLOAD_FIELDS} FROM {self.tables.execution_payload} WHERE id=:id"
        row = self._first(text(sql), {"id": execution_payload_id})
        return _row_to(ExecutionPayloadEntry, row) if row is not None else None

    def get_execution_payload_entry_by_slot_pk_hash(
        self, slot: int, proposer_pubkey: str, block_hash: str
    ) -> ExecutionPayloadEntry | None:
        sql = (
            f"SELECT {_EXECUTION_PAYLOAD_FIELDS} FROM {self.tables.execution_payload} "
            "WHERE slot=:slot AND proposer_pubkey=:proposer_pubkey AND block_hash=:block_hash"
        )
        row = self._first(
            text(sql), {"slot": slot, "proposer_pubkey": proposer_pubkey, "block_hash": block_hash}
        )
        return _row_to(ExecutionPayloadEntry, row) if row is not None else None

    def get_execution_payloads(self, id_first: int, id_last: int) -> list[ExecutionPayloadEntry]:
        sql = (
            f"SELECT {_EXECUTION_PAYLOAD_FIELDS} FROM {self.tables.execution_payload} "
            "WHERE id >= :id_first AND id <= :id_last ORDER BY id ASC"
        )
        rows = self._all(text(sql), {"id_first": id_first, "id_last": id_last})
        return [_row_to(ExecutionPayloadEntry, row) for row in rows]

    def delete_execution_payloads(self, id_first: int, id_last: int) -> None:
        sql = f"DELETE FROM {self.tables.execution_payload} WHERE id >= :id_first AND id <= :id_last"
        self._execute(text(sql), {"id_first": id_first, "id_last": id_last})

    # -- delivered payloads --------------------------------------------------

    def save_delivered_payload(self, bid_trace: BidTraceV2, signed_blinded_beacon_block: Any) -> None:
        """Record a payload delivered to a proposer; a repeat is ignored."""
        block_json = json.dumps(signed_blinded_beacon_block, default=_json_default)
        sql = (
            f"INSERT INTO {self.tables.delivered_payload} "
            "(signed_blinded_beacon_block, slot, epoch, builder_pubkey, proposer_pubkey, proposer_fee_recipient, "
            "parent_hash, block_hash, block_number, gas_used, gas_limit, num_tx, value) VALUES "
            "(:signed_blinded_beacon_block, :slot, :epoch, :builder_pubkey, :proposer_pubkey, "
            ":proposer_fee_recipient, :parent_hash, :block_hash, :block_number, :gas_used, :gas_limit, "
            ":num_tx, :value) ON CONFLICT DO NOTHING"
        )
        self._execute(
            text(sql),
            {
                "signed_blinded_beacon_block": block_json,
                "slot": bid_trace.slot,
                "epoch": bid_trace.slot // SLOTS_PER_EPOCH,
                "builder_pubkey": _hex(bid_trace.builder_pubkey),
                "proposer_pubkey": _hex(bid_trace.proposer_pubkey),
                "proposer_fee_recipient": _hex(bid_trace.proposer_fee_recipient),
                "parent_hash": _hex(bid_trace.parent_hash),
                "block_hash": _hex(bid_trace.block_hash),
                "block_number": bid_trace.block_number,
                "gas_used": bid_trace.gas_used,
                "gas_limit": bid_trace.gas_limit,
                "num_tx": bid_trace.num_tx,
                "value": str(bid_trace.value),
            },
        )

    def get_recent_delivered_payloads(self, filters: GetPayloadsFilters) -> list[DeliveredPayloadEntry]:
        """Delivered payloads matching the filters, by slot descending or by value."""
        params = {
            "limit": filters.limit,
            "slot": filters.slot,
            "cursor": filters.cursor,
            "block_hash": filters.block_hash,
            "block_number": filters.block_number,
            "proposer_pubkey": filters.proposer_pubkey,
            "builder_pubkey": filters.builder_pubkey,
        }
        conditions = []
        if filters.slot > 0:
            conditions.append("slot = :slot")
        elif filters.cursor > 0:
            conditions.append("slot <= :cursor")
        if filters.block_hash:
            conditions.append("block_hash = :block_hash")
        if filters.block_number > 0:
            conditions.append("block_number = :block_number")
        if filters.proposer_pubkey:
            conditions.append("proposer_pubkey = :proposer_pubkey")
        if filters.builder_pubkey:
            conditions.append("builder_pubkey = :builder_pubkey")
        where = "WHERE " + " AND ".join(conditions) if conditions else ""

        order_by = "slot DESC"
        if filters.order_by_value == 1:
            order_by = "value ASC"
        elif filters.order_by_value == -1:
            order_by = "value DESC"

        sql = (
            f"SELECT {_DELIVERED_FIELDS} FROM {self.tables.delivered_payload} {where} "
            f"ORDER BY {order_by} LIMIT :limit"
        )
        used = {k: v for k, v in params.items() if f":{k}" in sql}
        rows = self._all(text(sql), used, timeout=True)
        return [_row_to(DeliveredPayloadEntry, row) for row in rows]

    def get_delivered_payloads(self, id_first: int, id_last: int) -> list[DeliveredPayloadEntry]:
        sql = (
            f"SELECT {_DELIVERED_FIELDS} FROM {self.tables.delivered_payload} "
            "WHERE id >= :id_first AND id <= :id_last ORDER BY slot ASC"
        )
        rows = self._all(text(sql), {"id_first": id_first, "id_last": id_last})
        return [_row_to(DeliveredPayloadEntry, row) for row in rows]

    def get_num_delivered_payloads(self) -> int:
        return self._scalar(f"SELECT COUNT(*) FROM {self.tables.delivered_payload}")

    # -- block builders ------------------------------------------------------

    def upsert_block_builder_entry_after_submission(
        self, last_submission: BuilderBlockSubmissionEntry, is_error: bool
    ) -> None:
        """Create or update the builder's row after one of its submissions."""
        table = self.tables.block_builder
        sql = (
            f"INSERT INTO {table} "
            "(builder_pubkey, description, is_high_prio, is_blacklisted, last_submission_id, "
            "last_submission_slot, num_submissions_total, num_submissions_simerror) VALUES "
            "(:builder_pubkey, :description, :is_high_prio, :is_blacklisted, :last_submission_id, "
            ":last_submission_slot, :num_submissions_total, :num_submissions_simerror) "
            "ON CONFLICT (builder_pubkey) DO UPDATE SET "
            "last_submission_id = :last_submission_id, "
            "last_submission_slot = :last_submission_slot, "
            f"num_submissions_total = {table}.num_submissions_total + 1, "
            f"num_submissions_simerror = {table}.num_submissions_simerror + :num_submissions_simerror"
        )
        self._execute(
            text(sql),
            {
                "builder_pubkey": last_submission.builder_pubkey,
                "description": "",
                "is_high_prio": False,
                "is_blacklisted": False,
                "last_submission_id": last_submission.id,
                "last_submission_slot": last_submission.slot,
                "num_submissions_total": 1,
                "num_submissions_simerror": 1 if is_error else 0,
            },
        )

    def get_block_builders(self) -> list[BlockBuilderEntry]:
        sql = f"SELECT {_BLOCK_BUILDER_FIELDS} FROM {self.tables.block_builder} ORDER BY id ASC"
        return [_row_to(BlockBuilderEntry, row) for row in self._all(text(sql))]

    def get_block_builder_by_pubkey(self, pubkey: str) -> BlockBuilderEntry | None:
        sql = f"SELECT {_BLOCK_BUILDER_FIELDS} FROM {self.tables.block_builder} WHERE builder_pubkey=:pubkey"
        row = self._first(text(sql), {"pubkey": pubkey})
        return _row_to(BlockBuilderEntry, row) if row is not None else None

    def set_block_builder_status(self, pubkey: str, is_high_prio: bool, is_blacklisted: bool) -> None:
        sql = (
            f"UPDATE {self.tables.block_builder} SET is_high_prio=:is_high_prio, "
            "is_blacklisted=:is_blacklisted WHERE builder_pubkey=:pubkey"
        )
        self._execute(
            text(sql), {"is_high_prio": is_high_prio, "is_blacklisted": is_blacklisted, "pubkey": pubkey}
        )

    def inc_block_builder_stats_after_get_payload(self, builder_pubkey: str) -> None:
        sql = (
            f"UPDATE {self.tables.block_builder} SET num_sent_getpayload=num_sent_getpayload+1 "
            "WHERE builder_pubkey=:pubkey"
        )
        self._execute(text(sql), {"pubkey": builder_pubkey})

    # -- date lookups --------------------------------------------------------

    def _checked_table(self, table: str) -> str:
        known = {
            self.tables.validator_registration,
            self.tables.execution_payload,
            self.tables.builder_block_submission,
            self.tables.delivered_payload,
            self.tables.block_builder,
        }
        if table not in known:
            raise ValueError(f"unknown table: {table}")
        return table

    def find_id_on_or_after_date(self, table: str, date: str | date) -> int:
        """Id of the first row inserted on or after the day; LookupError if none."""
        name = self._checked_table(table)
        sql = f"SELECT id FROM {name} WHERE inserted_at >= :moment ORDER BY id ASC LIMIT 1"
        row = self._first(_stmt(sql, "moment"), {"moment": _start_of_day(date)})
        if row is None:
            raise LookupError(f"no entry in {name} on or after {date}")
        return int(row[0])

    def find_id_before_date(self, table: str, date: str | date) -> int:
        """Id of the last row inserted before the day; LookupError if none."""
        name = self._checked_table(table)
        sql = f"SELECT id FROM {name} WHERE inserted_at < :moment ORDER BY id DESC LIMIT 1"
        row = self._first(_stmt(sql, "moment"), {"moment": _start_of_day(date)})
        if row is None:
            raise LookupError(f"no entry in {name} before {date}")
        return int(row[0])


def new_database_service(dsn: str, apply_schema: bool | None = None) -> DatabaseService:
    """Connect to the database and, unless disabled, apply pending migrations.

    With apply_schema left as None, migrations run unless DB_DONT_APPLY_SCHEMA is set.
    """
    if dsn.startswith("postgres://"):
        dsn = "postgresql://" + dsn[len("postgres://"):]
    url = make_url(dsn)
    options: dict[str, Any] = {}
    if url.get_backend_name() == "postgresql":
        options = {
            "pool_size": MAX_IDLE_CONNECTIONS,
            "max_overflow": MAX_OPEN_CONNECTIONS - MAX_IDLE_CONNECTIONS,
            "pool_pre_ping": True,
        }
    engine = create_engine(url, **options)
    with engine.connect():
        pass

    if apply_schema is None:
        apply_schema = os.environ.get("DB_DONT_APPLY_SCHEMA", "") == ""
    tables = table_names()
    if apply_schema:
        apply_migrations(engine, tables)
    return DatabaseService(engine, tables)