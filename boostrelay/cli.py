"""Command line entry point of the relay."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from importlib import metadata
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

from .common import LOGGER_NAME, RelayError, get_env, log_setup
from .database import new_database_service
from .tools import archive_execution_payloads, export_bids, export_delivered_payloads, migrate

try:
    VERSION = metadata.version("boostrelay")
except metadata.PackageNotFoundError:
    VERSION = "dev"

PROG = "mev-boost-relay"

log = logging.getLogger(LOGGER_NAME)


def _uint(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid unsigned integer: {value!r}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError(f"invalid unsigned integer: {value!r}")
    return number


def _comma_list(value: str) -> list[str]:
    return [part for part in value.split(",") if part]


def _add_db(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", default=get_env("POSTGRES_DSN", ""), help="PostgreSQL DSN")


def _add_out(parser: argparse.ArgumentParser, required: bool) -> None:
    parser.add_argument(
        "--out", action="extend", type=_comma_list, default=[], required=required, help="output filename"
    )


def _add_id_range(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--id-from", dest="id_from", type=_uint, default=0, help="start id (inclusive)")
    parser.add_argument("--id-to", dest="id_to", type=_uint, default=0, help="end id (inclusive)")
    parser.add_argument("--date-start", dest="date_start", default="", help="start date (inclusive)")
    parser.add_argument("--date-end", dest="date_end", default="", help="end date (exclusive)")


def build_parser() -> argparse.ArgumentParser:
    """The argument parser with every command and flag."""
    parser = argparse.ArgumentParser(prog=PROG, description=f"{PROG} {VERSION}")
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("version", help="Print the version number the relay application")

    tool = commands.add_parser("tool", help="tools for managing the database")
    tools = tool.add_subparsers(dest="tool_command")

    payloads = tools.add_parser(
        "data-api-export-payloads",
        help="export delivered payloads to the proposer from the DB to a CSV or JSON file",
    )
    _add_db(payloads)
    _add_id_range(payloads)
    _add_out(payloads, required=True)

    bids = tools.add_parser("data-api-export-bids", help="export builder submissions to a CSV or JSON file")
    _add_db(bids)
    bids.add_argument("--slot-from", dest="slot_from", type=_uint, default=0, help="start slot (inclusive)")
    bids.add_argument("--slot-to", dest="slot_to", type=_uint, default=0, help="end slot (inclusive)")
    _add_out(bids, required=False)

    archive = tools.add_parser(
        "archive-execution-payloads",
        help="export execution payloads from the DB to a CSV or JSON file and archive by deleting the payloads",
    )
    _add_db(archive)
    _add_id_range(archive)
    archive.add_argument(
        "--delete", action="store_true", help="whether to also delete the archived payloads in the DB"
    )
    _add_out(archive, required=True)

    migrate_parser = tools.add_parser("migrate", help="migrate the database to the latest schema")
    _add_db(migrate_parser)

    parser.set_defaults(root_parser=parser, tool_parser=tool)
    return parser


def _describe_dsn(dsn: str) -> str:
    parsed = urlparse(dsn)
    return f"{parsed.hostname or ''}{parsed.path}"


def _run_tool(args: argparse.Namespace) -> None:
    log.info("Connecting to Postgres database at %s ...", _describe_dsn(args.db))
    if args.tool_command == "migrate":
        db = new_database_service(args.db, apply_schema=False)
    else:
        db = new_database_service(args.db)
    try:
        if args.tool_command == "migrate":
            migrate(db.engine, db.tables)
        elif args.tool_command == "data-api-export-payloads":
            export_delivered_payloads(db, args.out, args.id_from, args.id_to, args.date_start, args.date_end)
        elif args.tool_command == "data-api-export-bids":
            export_bids(db, args.out, args.slot_from, args.slot_to)
        elif args.tool_command == "archive-execution-payloads":
            archive_execution_payloads(
                db, args.out, args.id_from, args.id_to, args.date_start, args.date_end, args.delete
            )
    finally:
        db.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the exit status."""
    args = build_parser().parse_args(argv)

    if args.command is None:
        print(f"{PROG} {VERSION}")
        args.root_parser.print_help()
        return 0
    if args.command == "version":
        print(f"boost-relay {VERSION}")
        return 0
    if args.tool_command is None:
        print("Error: please use a valid subcommand")
        args.tool_parser.print_help()
        return 0

    log_setup(False, "info")
    try:
        _run_tool(args)
    except (RelayError, ValueError, LookupError, OSError, SQLAlchemyError) as exc:
        log.error("%s failed: %s", args.tool_command, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())