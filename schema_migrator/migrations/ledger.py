"""
Migration ledger: the record of which migration versions have been applied.

The ledger is a single table in the target database:

    version     INTEGER PRIMARY KEY
    filename    TEXT NOT NULL
    executed_at TIMESTAMPTZ DEFAULT NOW()

It is the source of truth for idempotency. A row for version V means every
statement of V committed, because the executor inserts the row inside the
same transaction as V's statements. Rows are only ever inserted, or removed
all at once by wipe_ledger() during rollback testing. Application code must
never write to this table.

The executor depends on the LedgerStore protocol rather than on this module's
PostgreSQL implementation, so tests can inject an in-memory store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from psycopg import sql

from schema_migrator.config.constants import DEFAULT_SCHEMA, LEDGER_TABLE
from schema_migrator.config.validators import validate_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """One applied migration."""

    version: int
    filename: str
    executed_at: datetime | None = None


class LedgerStore(Protocol):
    """Repository interface for the migration ledger."""

    def ensure_ledger_table(self) -> None:
        """Create the ledger table if absent. Must run before anything else."""
        ...

    def applied_versions(self) -> set[int]:
        """Return every version recorded as applied."""
        ...

    def record_applied(self, version: int, filename: str) -> None:
        """Record a version as applied (inside the caller's transaction)."""
        ...

    def wipe_ledger(self) -> None:
        """Delete every ledger entry."""
        ...

    def entries(self) -> list[LedgerEntry]:
        """Return all ledger entries ordered by version."""
        ...


class PostgresLedgerStore:
    """
    LedgerStore backed by a table on the migration connection.

    Shares the executor's psycopg connection, so record_applied() joins
    whatever transaction is open when it is called.

    Args:
        conn: psycopg Connection (autocommit, transactions opened explicitly)
        table_name: Ledger table name, checked against the identifier allow-list
        schema: Schema holding the ledger table

    Raises:
        IdentifierError: If table_name or schema is not a plain identifier
    """

    def __init__(self, conn, table_name: str = LEDGER_TABLE, schema: str = DEFAULT_SCHEMA):
        self.conn = conn
        self.table_name = validate_identifier(table_name, "ledger table")
        self.schema = validate_identifier(schema, "schema")
        self._table = sql.Identifier(self.schema, self.table_name)

    def ensure_ledger_table(self) -> None:
        self.conn.execute(
            sql.SQL(
                "CREATE TABLE IF NOT EXISTS {} ("
                "version INTEGER PRIMARY KEY, "
                "filename TEXT NOT NULL, "
                "executed_at TIMESTAMPTZ DEFAULT NOW())"
            ).format(self._table)
        )
        logger.debug(f"Ledger table ready: {self.schema}.{self.table_name}")

    def applied_versions(self) -> set[int]:
        rows = self.conn.execute(
            sql.SQL("SELECT version FROM {}").format(self._table)
        ).fetchall()
        return {row[0] for row in rows}

    def record_applied(self, version: int, filename: str) -> None:
        self.conn.execute(
            sql.SQL("INSERT INTO {} (version, filename) VALUES (%s, %s)").format(
                self._table
            ),
            (version, filename),
        )

    def wipe_ledger(self) -> None:
        self.conn.execute(sql.SQL("DELETE FROM {}").format(self._table))
        logger.info(f"Wiped ledger {self.schema}.{self.table_name}")

    def drop_ledger_table(self) -> None:
        """Drop the ledger table itself (rollback testing only)."""
        self.conn.execute(sql.SQL("DROP TABLE IF EXISTS {}").format(self._table))

    def entries(self) -> list[LedgerEntry]:
        rows = self.conn.execute(
            sql.SQL(
                "SELECT version, filename, executed_at FROM {} ORDER BY version"
            ).format(self._table)
        ).fetchall()
        return [
            LedgerEntry(version=row[0], filename=row[1], executed_at=row[2])
            for row in rows
        ]
