"""Schema migrations for the relay database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text

from .common import RelayError
from .tables import Tables, table_names


@dataclass(frozen=True)
class Migration:
    """One schema step: the SQL to apply it and the SQL to revert it."""

    id: str
    up: tuple[str, ...]
    down: tuple[str, ...] = ()
    disable_transaction_up: bool = False
    disable_transaction_down: bool = False


def _init_database(t: Tables) -> Migration:
    vr = t.validator_registration
    ep = t.execution_payload
    bs = t.builder_block_submission
    dp = t.delivered_payload
    bb = t.block_builder
    up = f"""
		CREATE TABLE IF NOT EXISTS {vr} (
			id          bigint GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
			inserted_at timestamp NOT NULL default current_timestamp,

			pubkey        varchar(98) NOT NULL,
			fee_recipient varchar(42) NOT NULL,
			timestamp     bigint NOT NULL,
			gas_limit     bigint NOT NULL,
			signature     text NOT NULL
		);

		CREATE UNIQUE INDEX IF NOT EXISTS {vr}_pubkey_timestamp_uidx ON {vr}(pubkey, timestamp DESC);


		CREATE TABLE IF NOT EXISTS {ep} (
			id          bigint GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
			inserted_at timestamp NOT NULL default current_timestamp,

			slot            bigint NOT NULL,
			proposer_pubkey varchar(98) NOT NULL,
			block_hash      varchar(66) NOT NULL,

			version     text NOT NULL, -- bellatrix
			payload 	json NOT NULL
		);

		CREATE UNIQUE INDEX IF NOT EXISTS {ep}_slot_pk_hash_idx ON {ep}(slot, proposer_pubkey, block_hash);


		CREATE TABLE IF NOT EXISTS {bs} (
			id bigint GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
			inserted_at timestamp NOT NULL default current_timestamp,

			execution_payload_id bigint,

			-- simulation & verification results
			sim_success boolean NOT NULL,
			sim_error   text    NOT NULL,

			-- bidtrace data
			signature            text NOT NULL,

			slot        bigint NOT NULL,
			parent_hash varchar(66) NOT NULL,
			block_hash  varchar(66) NOT NULL,

			builder_pubkey         varchar(98) NOT NULL,
			proposer_pubkey        varchar(98) NOT NULL,
			proposer_fee_recipient varchar(42) NOT NULL,

			gas_used   bigint NOT NULL,
			gas_limit  bigint NOT NULL,

			num_tx int NOT NULL,
			value  NUMERIC(48, 0),

			-- helpers
			epoch        bigint NOT NULL,
			block_number bigint NOT NULL,
			was_most_profitable boolean NOT NULL
		);

		CREATE INDEX IF NOT EXISTS {bs}_slot_idx ON {bs}("slot");
		CREATE INDEX IF NOT EXISTS {bs}_blockhash_idx ON {bs}("block_hash");
		CREATE INDEX IF NOT EXISTS {bs}_blocknumber_idx ON {bs}("block_number");
		CREATE INDEX IF NOT EXISTS {bs}_builderpubkey_idx ON {bs}("builder_pubkey");
		CREATE INDEX IF NOT EXISTS {bs}_simsuccess_idx ON {bs}("sim_success");
		CREATE INDEX IF NOT EXISTS {bs}_mostprofit_idx ON {bs}("was_most_profitable");
		CREATE INDEX IF NOT EXISTS {bs}_executionpayloadid_idx ON {bs}("execution_payload_id");


		CREATE TABLE IF NOT EXISTS {dp} (
			id bigint GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
			inserted_at timestamp NOT NULL default current_timestamp,

			signed_blinded_beacon_block json,

			epoch bigint NOT NULL,
			slot  bigint NOT NULL,

			builder_pubkey         varchar(98) NOT NULL,
			proposer_pubkey        varchar(98) NOT NULL,
			proposer_fee_recipient varchar(42) NOT NULL,

			parent_hash  varchar(66) NOT NULL,
			block_hash   varchar(66) NOT NULL,
			block_number bigint NOT NULL,

			gas_used  bigint NOT NULL,
			gas_limit bigint NOT NULL,

			num_tx  int NOT NULL,
			value   NUMERIC(48, 0),

			UNIQUE (slot, proposer_pubkey, block_hash)
		);

		CREATE INDEX IF NOT EXISTS {dp}_slot_idx ON {dp}("slot");
		CREATE INDEX IF NOT EXISTS {dp}_blockhash_idx ON {dp}("block_hash");
		CREATE INDEX IF NOT EXISTS {dp}_blocknumber_idx ON {dp}("block_number");
		CREATE INDEX IF NOT EXISTS {dp}_proposerpubkey_idx ON {dp}("proposer_pubkey");
		CREATE INDEX IF NOT EXISTS {dp}_builderpubkey_idx ON {dp}("builder_pubkey");
		CREATE INDEX IF NOT EXISTS {dp}_value_idx ON {dp}("value");


		CREATE TABLE IF NOT EXISTS {bb} (
			id bigint GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
			inserted_at timestamp NOT NULL default current_timestamp,

			builder_pubkey  varchar(98) NOT NULL,
			description    	text NOT NULL,

			is_high_prio    boolean NOT NULL,
			is_blacklisted  boolean NOT NULL,

			last_submission_id   bigint references {bs}(id) on delete set null,
			last_submission_slot bigint NOT NULL,

			num_submissions_total    bigint NOT NULL,
			num_submissions_simerror bigint NOT NULL,
			num_submissions_topbid   bigint NOT NULL,

			num_sent_getpayload bigint NOT NULL DEFAULT 0,

			UNIQUE (builder_pubkey)
		);
		"""
    down = f"""
		DROP TABLE IF EXISTS {bs};
		DROP TABLE IF EXISTS {dp};
		DROP TABLE IF EXISTS {bb};
		DROP TABLE IF EXISTS {ep};
		DROP TABLE IF EXISTS {vr};
		"""
    return Migration(id="001-init-database", up=(up,), down=(down,))


def _remove_isbest_add_receivedat(t: Tables) -> Migration:
    bs = t.builder_block_submission
    bb = t.block_builder
    first = f"""
		ALTER TABLE {bs} ADD received_at timestamp;

		ALTER TABLE {bs} DROP COLUMN was_most_profitable;
		DROP INDEX IF EXISTS {bs}_mostprofit_idx;

		ALTER TABLE {bb} DROP COLUMN num_submissions_topbid;
	"""
    second = f"""
		CREATE INDEX CONCURRENTLY IF NOT EXISTS {bs}_received_idx ON {bs}(received_at DESC);
	"""
    # an index cannot be created concurrently inside a transaction
    return Migration(
        id="002-remove-isbest-add-receivedat",
        up=(first, second),
        down=(),
        disable_transaction_up=True,
        disable_transaction_down=True,
    )


def migrations(tables: Tables | None = None) -> list[Migration]:
    """All migrations, in the order they are applied."""
    tables = tables if tables is not None else table_names()
    return [_init_database(tables), _remove_isbest_add_receivedat(tables)]


def _run_up(conn: Any, migration: Migration, tables: Tables) -> None:
    for statement in migration.up:
        conn.exec_driver_sql(statement)
    conn.execute(
        text(f"INSERT INTO {tables.migrations} (id, applied_at) VALUES (:id, :applied_at)"),
        {"id": migration.id, "applied_at": datetime.now(timezone.utc)},
    )


def apply_migrations(connection: Any, tables: Tables | None = None) -> int:
    """Apply pending migrations through an engine; return how many were applied.

    Applied migrations are recorded in the migrations table. An id recorded
    there that is not a known migration is an error.
    """
    tables = tables if tables is not None else table_names()
    known = migrations(tables)

    with connection.begin() as conn:
        conn.exec_driver_sql(
            f"CREATE TABLE IF NOT EXISTS {tables.migrations} "
            "(id text NOT NULL PRIMARY KEY, applied_at timestamp with time zone)"
        )
        applied = {row[0] for row in conn.execute(text(f"SELECT id FROM {tables.migrations}"))}

    unknown = sorted(applied - {m.id for m in known})
    if unknown:
        raise RelayError(f"unknown migration in database: {unknown[0]}")

    count = 0
    for migration in known:
        if migration.id in applied:
            continue
        if migration.disable_transaction_up:
            with connection.connect() as conn:
                conn = conn.execution_options(isolation_level="AUTOCOMMIT")
                _run_up(conn, migration, tables)
        else:
            with connection.begin() as conn:
                _run_up(conn, migration, tables)
        count += 1
    return count