"""Database maintenance tools: exports, archiving and migrations."""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine

from .common import LOGGER_NAME
from .database import DatabaseService
from .db_convert import (
    builder_submission_entry_to_bid_trace_with_timestamp,
    delivered_payload_entry_to_bid_trace,
)
from .db_types import EXECUTION_PAYLOAD_ENTRY_CSV_HEADER, ExecutionPayloadEntry
from .migrations import apply_migrations
from .tables import Tables
from .types import BidTraceV2JSON, BidTraceV2WithTimestampJSON

log = logging.getLogger(LOGGER_NAME)


def write_entries(
    out_file: str | Path,
    header: Sequence[str],
    rows: Iterable[Sequence[str]],
    items: Iterable[Any],
) -> None:
    """Write rows as CSV if the file name ends in '.csv', otherwise items as JSON."""
    path = Path(out_file)
    if str(out_file).endswith(".csv"):
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle, lineterminator="\n")
            writer.writerow(list(header))
            writer.writerows(rows)
    else:
        with path.open("w", encoding="utf-8") as handle:
            json.dump(list(items), handle, separators=(",", ":"))
            handle.write("\n")


def _resolve_id_range(
    db: DatabaseService, table: str, id_first: int, id_last: int, date_start: str, date_end: str
) -> tuple[int, int]:
    if date_start:
        id_first = db.find_id_on_or_after_date(table, date_start)
    if date_end:
        id_last = db.find_id_before_date(table, date_end)
    log.info("exporting ids %d to %d", id_first, id_last)
    return id_first, id_last


def _check_range_args(out_files: list[str], id_last: int, date_end: str) -> None:
    if not out_files:
        raise ValueError("no output files specified")
    if id_last == 0 and not date_end:
        raise ValueError("must specify --id-to or --date-end")


def archive_execution_payloads(
    db: DatabaseService,
    out_files: Iterable[str],
    id_first: int = 0,
    id_last: int = 0,
    date_start: str = "",
    date_end: str = "",
    delete: bool = False,
) -> list[ExecutionPayloadEntry]:
    """Export execution payloads to every output file, then optionally delete them."""
    files = list(out_files)
    _check_range_args(files, id_last, date_end)
    log.info("exporting execution payloads to %s", ", ".join(files))

    table = db.tables.execution_payload
    id_first, id_last = _resolve_id_range(db, table, id_first, id_last, date_start, date_end)

    payloads = db.get_execution_payloads(id_first, id_last)
    log.info("got %d payloads", len(payloads))
    if not payloads:
        return []

    for out_file in files:
        write_entries(
            out_file,
            EXECUTION_PAYLOAD_ENTRY_CSV_HEADER,
            (payload.to_csv_record() for payload in payloads),
            (payload.to_dict() for payload in payloads),
        )
        log.info("Wrote %d entries to %s", len(payloads), out_file)

    if delete:
        log.info("deleting archived payloads from DB")
        db.delete_execution_payloads(id_first, id_last)

    log.info("all done")
    return payloads


def export_bids(
    db: DatabaseService, out_files: Iterable[str], slot_from: int, slot_to: int
) -> list[BidTraceV2WithTimestampJSON]:
    """Export successfully simulated builder submissions for a slot range."""
    files = list(out_files)
    if not files:
        base = f"builder-submissions_slot-{slot_from}-to-{slot_to}"
        files = [base + ".csv", base + ".json"]
    log.info("exporting data-api bids to %s", ", ".join(files))

    if slot_from == 0 or slot_to == 0:
        raise ValueError("must specify --slot-from and --slot-to")

    log.info("exporting slots %d to %d (%d slots in total)...", slot_from, slot_to, slot_to - slot_from + 1)
    bids = db.get_builder_submissions_by_slots(slot_from, slot_to)
    log.info("got %d bids", len(bids))
    entries = [builder_submission_entry_to_bid_trace_with_timestamp(bid) for bid in bids]
    if not entries:
        return []

    for out_file in files:
        write_entries(
            out_file,
            entries[0].csv_header(),
            (entry.to_csv_record() for entry in entries),
            (entry.to_dict() for entry in entries),
        )
        log.info("Wrote %d entries to %s", len(entries), out_file)
    return entries


def export_delivered_payloads(
    db: DatabaseService,
    out_files: Iterable[str],
    id_first: int = 0,
    id_last: int = 0,
    date_start: str = "",
    date_end: str = "",
) -> list[BidTraceV2JSON]:
    """Export payloads delivered to proposers for an id or date range."""
    files = list(out_files)
    _check_range_args(files, id_last, date_end)
    log.info("exporting data-api payloads to %s", ", ".join(files))

    table = db.tables.delivered_payload
    id_first, id_last = _resolve_id_range(db, table, id_first, id_last, date_start, date_end)

    delivered = db.get_delivered_payloads(id_first, id_last)
    log.info("got %d payloads", len(delivered))
    entries = [delivered_payload_entry_to_bid_trace(payload) for payload in delivered]
    if not entries:
        return []

    for out_file in files:
        write_entries(
            out_file,
            entries[0].csv_header(),
            (entry.to_csv_record() for entry in entries),
            (entry.to_dict() for entry in entries),
        )
        log.info("Wrote %d entries to %s", len(entries), out_file)
    return entries


def migrate(engine: Engine, tables: Tables | None = None) -> int:
    """Bring the schema up to date; return the number of migrations applied."""
    log.info("Migrating database ...")
    count = apply_migrations(engine, tables)
    log.info("Migrations applied successfully (num_applied_migrations=%d)", count)
    return count