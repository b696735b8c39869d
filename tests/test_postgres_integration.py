"""
Live PostgreSQL tests.

Skipped unless SCHEMA_MIGRATOR_TEST_DSN points at a server the test user can
create schemas on, e.g.:

    SCHEMA_MIGRATOR_TEST_DSN="host=localhost user=postgres dbname=postgres" pytest -m postgres

Each test works inside its own throwaway schema.
"""

import uuid

import psycopg
import pytest
from psycopg import sql

from conftest import write_migration
from schema_migrator.config.schema import SchemaExpectation
from schema_migrator.exceptions import MigrationFailed
from schema_migrator.migrations.executor import MigrationExecutor
from schema_migrator.migrations.ledger import PostgresLedgerStore
from schema_migrator.migrations.loader import load_migrations
from schema_migrator.schema.validator import SchemaValidator

pytestmark = pytest.mark.postgres


@pytest.fixture
def live_conn(postgres_dsn):
    schema = f"sm_it_{uuid.uuid4().hex[:12]}"
    with psycopg.connect(postgres_dsn, autocommit=True) as conn:
        conn.execute(sql.SQL("CREATE SCHEMA {}").format(sql.Identifier(schema)))
        conn.execute(sql.SQL("SET search_path TO {}").format(sql.Identifier(schema)))
        try:
            yield conn, schema
        finally:
            conn.execute(sql.SQL("DROP SCHEMA {} CASCADE").format(sql.Identifier(schema)))


@pytest.fixture
def foo_migrations(migrations_dir):
    write_migration(migrations_dir, "001_create_foo.sql", "CREATE TABLE foo (id int);\n")
    write_migration(
        migrations_dir,
        "002_add_bar_column.sql",
        "ALTER TABLE foo ADD COLUMN bar text;\n"
        "CREATE OR REPLACE FUNCTION touch_foo() RETURNS trigger AS $$\n"
        "BEGIN\n"
        "    NEW.bar = 'touched';\n"
        "    RETURN NEW;\n"
        "END;\n"
        "$$ LANGUAGE plpgsql;\n",
    )
    return load_migrations(migrations_dir)


def test_fresh_then_repeated_run(live_conn, foo_migrations):
    conn, schema = live_conn
    ledger = PostgresLedgerStore(conn, schema=schema)

    first = MigrationExecutor(conn, ledger).run(foo_migrations)
    second = MigrationExecutor(conn, ledger).run(foo_migrations)

    assert first.applied_count == 2
    assert ledger.applied_versions() == {1, 2}
    assert second.statements_executed == 0
    assert [e.filename for e in ledger.entries()] == [
        "001_create_foo.sql",
        "002_add_bar_column.sql",
    ]

    report = SchemaValidator(conn, schema=schema).validate(
        SchemaExpectation(
            tables={"foo", "schema_migrations"},
            required_columns={"foo": {"id", "bar"}},
            functions={"touch_foo"},
        )
    )
    assert report.passed
    assert report.present_functions == ["touch_foo"]


def test_tolerated_duplicate_table(live_conn, migrations_dir):
    conn, schema = live_conn
    conn.execute("CREATE TABLE foo (id int)")
    write_migration(migrations_dir, "001_create_foo.sql", "CREATE TABLE foo (id int);\n")
    ledger = PostgresLedgerStore(conn, schema=schema)

    result = MigrationExecutor(conn, ledger).run(load_migrations(migrations_dir))

    assert ledger.applied_versions() == {1}
    assert result.warning_count == 1


def test_failed_migration_rolls_back(live_conn, migrations_dir):
    conn, schema = live_conn
    write_migration(
        migrations_dir,
        "001_partial.sql",
        "CREATE TABLE foo (id int);\nCREAT TABLE bar (id int);\n",
    )
    ledger = PostgresLedgerStore(conn, schema=schema)

    with pytest.raises(MigrationFailed) as exc_info:
        MigrationExecutor(conn, ledger).run(load_migrations(migrations_dir))

    assert exc_info.value.sqlstate == "42601"
    assert ledger.applied_versions() == set()
    rows = conn.execute(
        "SELECT 1 FROM information_schema.tables WHERE table_schema = %s AND table_name = 'foo'",
        (schema,),
    ).fetchall()
    assert rows == []
