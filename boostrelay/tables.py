"""Database table names, derived from a configurable prefix."""

from __future__ import annotations

from dataclasses import dataclass

from .common import get_env

TABLE_PREFIX_ENV = "DB_TABLE_PREFIX"
DEFAULT_TABLE_PREFIX = "dev"


@dataclass(frozen=True)
class Tables:
    """The set of table names sharing one prefix."""

    prefix: str

    @property
    def migrations(self) -> str:
        return self.prefix + "_migrations"

    @property
    def validator_registration(self) -> str:
        return self.prefix + "_validator_registration"

    @property
    def execution_payload(self) -> str:
        return self.prefix + "_execution_payload"

    @property
    def builder_block_submission(self) -> str:
        return self.prefix + "_builder_block_submission"

    @property
    def delivered_payload(self) -> str:
        return self.prefix + "_payload_delivered"

    @property
    def block_builder(self) -> str:
        return self.prefix + "_blockbuilder"


def table_names(prefix: str | None = None) -> Tables:
    """Table names for the prefix, or for DB_TABLE_PREFIX (default 'dev')."""
    if prefix is None:
        prefix = get_env(TABLE_PREFIX_ENV, DEFAULT_TABLE_PREFIX)
    return Tables(prefix)