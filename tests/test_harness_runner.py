"""
Tests for harness.runner - the end-to-end migration test harness.

The harness is driven against a fake server: one FakeConnection plays the
maintenance database, another the ephemeral database. The fake answers the
ledger and catalog queries the harness issues.

Tests cover:
- Success path visits every state in order
- A broken migration ends in FAILURE and the database is still dropped
- Validation failures carry the report
- Discovery and connection errors happen before any database is created
- A failed drop is recorded, never raised
- DOWN pass problems are warnings, and every table left behind is reported
- Unreadable scripts and unusable database names end in FAILURE, not an exception
"""

import re

import psycopg.errors
import pytest

from conftest import FakeConnection, write_migration
from schema_migrator.config.schema import (
    BaselineSchema,
    ColumnDefinition,
    DatabaseSettings,
    SchemaExpectation,
    TableDefinition,
    TeardownPlan,
)
from schema_migrator.exceptions import DatabaseConnectionError
from schema_migrator.harness.runner import HarnessState, MigrationTestHarness

EPHEMERAL = "shop_migration_test"


_CREATE_TABLE = re.compile(r'^CREATE TABLE (?:IF NOT EXISTS )?(?:"\w+"\.)?"?(\w+)"?')
_DROP_TABLE = re.compile(r'^DROP TABLE IF EXISTS (?:"\w+"\.)?"?(\w+)"?')
_LEDGER_STATEMENT = re.compile(r'^(INSERT INTO|SELECT version FROM|DELETE FROM) "\w+"\."(\w+)"')


class FakeServer:
    """
    Hands out an admin and a database connection.

    The database side keeps a live table catalog: CREATE TABLE adds a table,
    DROP TABLE IF EXISTS removes it, and ledger statements against a table
    that does not exist fail with UndefinedTable like the real server.
    ``ledgers`` keeps every version ever recorded, wiped or not.
    """

    def __init__(self, tables=(), failures=None, admin_handler=None):
        self.tables = set(tables)
        self.ledgers: dict[str, set[int]] = {}
        self.connects: list[str | None] = []
        self.admin = FakeConnection(handler=admin_handler)
        self.db = FakeConnection(handler=self._handle, failures=failures)

    def connect(self, settings, dbname=None, autocommit=True):
        self.connects.append(dbname)
        return self.admin if dbname == "postgres" else self.db

    def _handle(self, text, params):
        if match := _LEDGER_STATEMENT.match(text):
            verb, ledger = match.groups()
            if ledger not in self.tables:
                raise psycopg.errors.UndefinedTable(f'relation "{ledger}" does not exist')
            if verb == "INSERT INTO":
                self.ledgers.setdefault(ledger, set()).add(params[0])
            elif verb == "SELECT version FROM":
                return [(v,) for v in sorted(self.ledgers.get(ledger, ()))]
        elif match := _CREATE_TABLE.match(text):
            self.tables.add(match.group(1))
        elif match := _DROP_TABLE.match(text):
            self.tables.discard(match.group(1))
        elif "information_schema.tables" in text:
            return [(name,) for name in sorted(self.tables)]
        return []


@pytest.fixture
def settings():
    return DatabaseSettings(host="localhost", name="shop", user="postgres")


@pytest.fixture
def baseline():
    return BaselineSchema(
        tables=[TableDefinition(name="foo", columns=[ColumnDefinition(name="id", type="int")])],
        teardown=TeardownPlan(tables=["foo"]),
    )


@pytest.fixture
def expectation():
    return SchemaExpectation(tables={"foo"})


@pytest.fixture
def make_harness(settings, baseline, expectation, migrations_dir):
    def _make(server, **kwargs):
        kwargs.setdefault("expectation", expectation)
        return MigrationTestHarness(
            settings,
            migrations_dir,
            baseline=baseline,
            connect=server.connect,
            **kwargs,
        )

    return _make


# ============================================================================
# Success path
# ============================================================================


class TestSuccessPath:
    """A clean migration set."""

    @pytest.fixture(autouse=True)
    def _migrations(self, migrations_dir):
        write_migration(migrations_dir, "001_add_bar.sql", "ALTER TABLE foo ADD COLUMN bar text;\n")
        write_migration(
            migrations_dir, "001_add_bar.down.sql", "ALTER TABLE foo DROP COLUMN bar;\n"
        )
        write_migration(migrations_dir, "002_seed.sql", "INSERT INTO foo VALUES (1);\n")

    def test_visits_every_state(self, make_harness):
        result = make_harness(FakeServer()).run()

        assert result.state is HarnessState.SUCCESS
        assert result.success
        assert result.history == [
            HarnessState.INIT,
            HarnessState.DB_CREATED,
            HarnessState.CONNECTED,
            HarnessState.UP_APPLIED,
            HarnessState.VALIDATED,
            HarnessState.DOWN_ATTEMPTED,
            HarnessState.CLEANED_UP,
            HarnessState.SUCCESS,
        ]
        assert result.error is None

    def test_ephemeral_database_created_and_dropped(self, make_harness):
        server = FakeServer()

        result = make_harness(server).run()

        assert result.database == EPHEMERAL
        assert server.connects == ["postgres", EPHEMERAL]
        assert server.admin.executed == [
            f'DROP DATABASE IF EXISTS "{EPHEMERAL}"',
            f'CREATE DATABASE "{EPHEMERAL}"',
            f'DROP DATABASE IF EXISTS "{EPHEMERAL}"',
        ]
        assert result.database_dropped
        assert server.admin.closed
        assert server.db.closed

    def test_up_pass_bootstraps_then_migrates(self, make_harness):
        server = FakeServer()

        result = make_harness(server).run()

        create_foo = server.db.executed.index('CREATE TABLE IF NOT EXISTS "foo" ("id" int)')
        add_bar = server.db.executed.index("ALTER TABLE foo ADD COLUMN bar text;")
        assert create_foo < add_bar
        assert result.baseline.executed == 1
        assert result.incremental_run.applied_count == 2
        assert server.ledgers["schema_migrations"] == {1, 2}

    def test_down_pass(self, make_harness):
        server = FakeServer()

        result = make_harness(server).run()

        assert result.teardown.rolled_back == [1]
        assert result.teardown.missing_down_scripts == ["002_seed.sql"]
        assert "No rollback script available for: 002_seed.sql" in result.warnings
        assert 'DROP TABLE IF EXISTS "public"."foo" CASCADE' in server.db.executed
        assert 'DELETE FROM "public"."schema_migrations"' in server.db.executed
        assert 'DROP TABLE IF EXISTS "public"."schema_migrations"' in server.db.executed
        assert not server.db.statements_matching("base_schema_migrations")
        assert not any(w.startswith("DOWN pass incomplete") for w in result.warnings)
        assert result.teardown.remaining_tables == []

    def test_on_state_callback(self, make_harness):
        seen = []

        result = make_harness(FakeServer(), on_state=seen.append).run()

        assert seen == result.history[1:]

    def test_base_migrations_use_separate_ledger(self, make_harness, tmp_path):
        base_dir = tmp_path / "base"
        base_dir.mkdir()
        write_migration(base_dir, "001_base.sql", "CREATE INDEX idx_foo ON foo (id);\n")
        server = FakeServer()

        result = make_harness(server, base_dir=base_dir).run()

        assert result.success
        assert result.base_run.applied_count == 1
        assert server.ledgers["base_schema_migrations"] == {1}
        assert server.ledgers["schema_migrations"] == {1, 2}
        assert result.teardown.missing_down_scripts == ["002_seed.sql", "001_base.sql"]
        assert 'DROP TABLE IF EXISTS "public"."base_schema_migrations"' in server.db.executed
        assert result.teardown.remaining_tables == []

    def test_table_without_down_script_is_reported(self, make_harness, migrations_dir):
        """Tables outside the drop plan that survive teardown are still listed."""
        write_migration(migrations_dir, "003_widgets.sql", "CREATE TABLE widgets (id int);\n")
        server = FakeServer()

        result = make_harness(server).run()

        assert result.success
        assert result.teardown.remaining_tables == ["widgets"]
        assert "1 tables still exist after rollback: widgets" in result.warnings
        assert "No rollback script available for: 003_widgets.sql, 002_seed.sql" in result.warnings

    def test_teardown_error_is_a_warning(self, make_harness):
        server = FakeServer(
            failures={'DROP TABLE IF EXISTS "public"."foo"': psycopg.errors.InsufficientPrivilege("must be owner")}
        )

        result = make_harness(server).run()

        assert result.success
        assert any(w.startswith("DOWN pass incomplete") for w in result.warnings)
        assert result.teardown.remaining_tables == ["foo", "schema_migrations"]
        assert result.database_dropped

    def test_unreadable_down_script_is_a_warning(self, make_harness, migrations_dir):
        (migrations_dir / "002_seed.down.sql").write_bytes(b"DELETE FROM foo WHERE note = '\xff';\n")

        result = make_harness(FakeServer()).run()

        assert result.success
        assert result.teardown.failed_down_scripts == ["002_seed.sql"]
        assert "Rollback scripts failed: 002_seed.sql" in result.warnings
        assert result.teardown.rolled_back == [1]


# ============================================================================
# Failure paths
# ============================================================================


class TestFailurePaths:
    """Every failure still ends with the ephemeral database dropped."""

    def test_broken_migration(self, make_harness, migrations_dir):
        """A syntax error fails the run, cleanup still runs."""
        write_migration(migrations_dir, "001_ok.sql", "ALTER TABLE foo ADD COLUMN bar text;\n")
        write_migration(migrations_dir, "002_broken.sql", "CREAT TABLE baz (id int);\n")
        server = FakeServer(
            failures={"CREAT TABLE": psycopg.errors.SyntaxError('syntax error at or near "CREAT"')}
        )

        result = make_harness(server).run()

        assert result.state is HarnessState.FAILURE
        assert result.failed_stage is HarnessState.CONNECTED
        assert "002_broken.sql" in result.error
        assert result.history[-2:] == [HarnessState.CLEANED_UP, HarnessState.FAILURE]
        assert result.incremental_run.failed.version == 2
        assert server.admin.executed[-1] == f'DROP DATABASE IF EXISTS "{EPHEMERAL}"'
        assert result.database_dropped

    def test_validation_failure_carries_report(self, make_harness, migrations_dir):
        write_migration(migrations_dir, "001_noop.sql", "SELECT 1;\n")
        server = FakeServer()

        result = make_harness(
            server, expectation=SchemaExpectation(tables={"foo", "widgets"})
        ).run()

        assert result.state is HarnessState.FAILURE
        assert result.failed_stage is HarnessState.UP_APPLIED
        assert result.validation.missing_tables == ["widgets"]
        assert result.database_dropped

    def test_missing_columns_failure(self, make_harness, migrations_dir):
        write_migration(migrations_dir, "001_noop.sql", "SELECT 1;\n")

        result = make_harness(
            FakeServer(),
            expectation=SchemaExpectation(required_columns={"foo": {"id"}}),
        ).run()

        assert result.state is HarnessState.FAILURE
        assert result.validation.missing_columns == {"foo": ["id"]}

    def test_discovery_error_before_any_connection(self, settings, baseline, expectation, tmp_path):
        server = FakeServer()
        harness = MigrationTestHarness(
            settings,
            tmp_path / "missing",
            baseline=baseline,
            expectation=expectation,
            connect=server.connect,
        )

        result = harness.run()

        assert result.state is HarnessState.FAILURE
        assert result.failed_stage is HarnessState.INIT
        assert server.connects == []
        assert not result.database_dropped

    def test_connection_error(self, make_harness):
        class Unreachable:
            def connect(self, settings, dbname=None, autocommit=True):
                raise DatabaseConnectionError("Could not connect to localhost:5432/postgres")

        result = make_harness(Unreachable()).run()

        assert result.state is HarnessState.FAILURE
        assert result.failed_stage is HarnessState.INIT
        assert "Could not connect" in result.error

    def test_failed_drop_is_recorded_not_raised(self, make_harness, migrations_dir):
        write_migration(migrations_dir, "001_noop.sql", "SELECT 1;\n")
        server = FakeServer()

        def admin_handler(text, params):
            if text.startswith("DROP DATABASE") and server.admin.statements_matching("CREATE"):
                raise psycopg.errors.ObjectInUse("database is being accessed by other users")
            return []

        server.admin.handler = admin_handler

        result = make_harness(server).run()

        assert result.state is HarnessState.SUCCESS
        assert not result.database_dropped
        assert "Could not drop ephemeral database" in result.cleanup_error
        assert server.admin.closed

    def test_undecodable_migration_fails_the_run(self, make_harness, migrations_dir):
        (migrations_dir / "001_latin1.sql").write_bytes(b"INSERT INTO foo VALUES ('caf\xe9');\n")
        server = FakeServer()

        result = make_harness(server).run()

        assert result.state is HarnessState.FAILURE
        assert result.failed_stage is HarnessState.CONNECTED
        assert "001_latin1.sql" in result.error
        assert result.incremental_run.failed.version == 1
        assert result.database_dropped

    def test_unusable_ephemeral_name_fails_before_connecting(self, baseline, expectation, migrations_dir):
        """Mixed-case names are valid PostgreSQL but not for the ephemeral database."""
        server = FakeServer()
        harness = MigrationTestHarness(
            DatabaseSettings(host="localhost", name="MindsDB", user="postgres"),
            migrations_dir,
            baseline=baseline,
            expectation=expectation,
            connect=server.connect,
        )

        result = harness.run()

        assert result.state is HarnessState.FAILURE
        assert result.failed_stage is HarnessState.INIT
        assert result.database == "MindsDB_migration_test"
        assert "MindsDB_migration_test" in result.error
        assert server.connects == []
        assert not result.database_dropped
