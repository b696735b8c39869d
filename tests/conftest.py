"""
Shared fixtures: a psycopg-like fake connection and an in-memory ledger.

FakeConnection records every statement it is asked to execute and models
conn.transaction() nesting the way psycopg does (outer block = transaction,
inner blocks = savepoints). Statements can be made to fail by registering a
substring and the exception to raise. Work registered with on_commit() only
takes effect when the outermost transaction commits, which lets the
in-memory ledger behave atomically with the migration it belongs to.
"""

import os
from contextlib import contextmanager
from pathlib import Path

import pytest
from psycopg import sql


def _query_text(query) -> str:
    if isinstance(query, sql.Composable):
        return query.as_string(None)
    return str(query)


class FakeCursor:
    def __init__(self, rows):
        self._rows = list(rows)

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    """
    Minimal stand-in for a psycopg Connection in autocommit mode.

    Args:
        handler: Optional callable(text, params) returning result rows
        failures: Mapping of statement substring -> exception instance
    """

    def __init__(self, handler=None, failures=None):
        self.handler = handler
        self.failures = dict(failures or {})
        self.executed: list[str] = []
        self.params: list = []
        self.events: list[str] = []
        self.closed = False
        self._depth = 0
        self._on_commit: list = []

    def execute(self, query, params=None):
        text = _query_text(query)
        self.executed.append(text)
        self.params.append(params)
        for needle, exc in self.failures.items():
            if needle in text:
                raise exc
        rows = self.handler(text, params) if self.handler else None
        return FakeCursor(rows or [])

    @contextmanager
    def transaction(self):
        outer = self._depth == 0
        self._depth += 1
        self.events.append("begin" if outer else "savepoint")
        try:
            yield self
        except BaseException:
            self.events.append("rollback" if outer else "rollback_to_savepoint")
            if outer:
                self._on_commit.clear()
            raise
        else:
            self.events.append("commit" if outer else "release_savepoint")
            if outer:
                actions, self._on_commit = self._on_commit, []
                for action in actions:
                    action()
        finally:
            self._depth -= 1

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def on_commit(self, action) -> None:
        if self.in_transaction:
            self._on_commit.append(action)
        else:
            action()

    def statements_matching(self, needle: str) -> list[str]:
        return [text for text in self.executed if needle in text]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class InMemoryLedgerStore:
    """LedgerStore kept in a dict; writes commit with the fake transaction."""

    def __init__(self, conn=None, versions=None):
        self.conn = conn
        self.versions: dict[int, str] = dict(versions or {})
        self.ensure_calls = 0

    def ensure_ledger_table(self) -> None:
        self.ensure_calls += 1

    def applied_versions(self) -> set[int]:
        return set(self.versions)

    def record_applied(self, version: int, filename: str) -> None:
        def _write():
            self.versions[version] = filename

        if self.conn is not None:
            self.conn.on_commit(_write)
        else:
            _write()

    def wipe_ledger(self) -> None:
        self.versions.clear()

    def entries(self):
        from schema_migrator.migrations.ledger import LedgerEntry

        return [
            LedgerEntry(version=v, filename=f) for v, f in sorted(self.versions.items())
        ]


def write_migration(directory: Path, filename: str, content: str) -> Path:
    path = directory / filename
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def fake_conn():
    return FakeConnection()


@pytest.fixture
def ledger(fake_conn):
    return InMemoryLedgerStore(fake_conn)


@pytest.fixture
def migrations_dir(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    return directory


@pytest.fixture
def postgres_dsn():
    """Connection string for live tests, or skip when none is configured."""
    dsn = os.environ.get("SCHEMA_MIGRATOR_TEST_DSN")
    if not dsn:
        pytest.skip("SCHEMA_MIGRATOR_TEST_DSN not set")
    return dsn
