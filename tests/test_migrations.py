import pytest

from boostrelay.common import RelayError
from boostrelay.migrations import Migration, apply_migrations, migrations
from boostrelay.tables import table_names

IDS = ["001-init-database", "002-remove-isbest-add-receivedat"]


class FakeConnection:
    def __init__(self, engine, mode):
        self.engine = engine
        self.mode = mode

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execution_options(self, **options):
        self.mode = options.get("isolation_level", self.mode)
        return self

    def exec_driver_sql(self, sql):
        self.engine.statements.append((self.mode, sql))

    def execute(self, statement, parameters=None):
        sql = str(statement)
        if sql.startswith("SELECT"):
            self.engine.selects.append(sql)
            return [(i,) for i in self.engine.applied]
        self.engine.inserts.append(sql)
        self.engine.applied.append(parameters["id"])
        self.engine.records.append((self.mode, parameters["id"]))
        return []


class FakeEngine:
    def __init__(self, applied=()):
        self.applied = list(applied)
        self.statements = []
        self.records = []
        self.selects = []
        self.inserts = []

    def begin(self):
        return FakeConnection(self, "transaction")

    def connect(self):
        return FakeConnection(self, "connection")


def test_migration_ids_in_order():
    assert [m.id for m in migrations(table_names("test"))] == IDS


def test_table_prefix_is_substituted():
    tables = table_names("custom")
    first = migrations(tables)[0]
    sql = first.up[0]
    for name in (
        tables.validator_registration,
        tables.execution_payload,
        tables.builder_block_submission,
        tables.delivered_payload,
        tables.block_builder,
    ):
        assert f"CREATE TABLE IF NOT EXISTS {name} (" in sql
        assert f"DROP TABLE IF EXISTS {name};" in first.down[0]
    assert "dev_" not in sql


def test_second_migration_runs_outside_transaction():
    first, second = migrations(table_names("x"))
    assert not first.disable_transaction_up
    assert second.disable_transaction_up
    assert len(second.up) == 2
    assert "CREATE INDEX CONCURRENTLY" in second.up[1]
    assert second.down == ()


def test_migration_is_frozen():
    m = migrations(table_names("x"))[0]
    with pytest.raises(AttributeError):
        m.id = "other"  # type: ignore[misc]
    assert isinstance(m, Migration) and m.id == IDS[0]


def test_apply_on_fresh_database():
    tables = table_names("t")
    engine = FakeEngine()
    assert apply_migrations(engine, tables) == 2
    assert engine.records == [("transaction", IDS[0]), ("AUTOCOMMIT", IDS[1])]
    assert len(engine.statements) == 4
    assert tables.migrations in engine.statements[0][1]
    assert all(tables.migrations in s for s in engine.inserts)


def test_apply_when_up_to_date():
    engine = FakeEngine(applied=IDS)
    assert apply_migrations(engine, table_names("t")) == 0
    assert len(engine.statements) == 1
    assert engine.records == []


def test_apply_partial():
    engine = FakeEngine(applied=[IDS[0]])
    assert apply_migrations(engine, table_names("t")) == 1
    assert engine.records == [("AUTOCOMMIT", IDS[1])]


def test_unknown_migration_in_database():
    engine = FakeEngine(applied=[IDS[0], "999-mystery"])
    with pytest.raises(RelayError, match="unknown migration"):
        apply_migrations(engine, table_names("t"))
    assert engine.records == []