"""
Migration engine: discovery, statement splitting, execution and rollback.

Public API:
    - load_migrations: Discover versioned migration files in a directory
    - split_statements: Split SQL text into executable statements
    - MigrationExecutor: Apply pending migrations against a ledger
    - PostgresLedgerStore: Ledger table on the migration connection
    - rollback_migrations / teardown_schema: The DOWN pass
"""

from schema_migrator.migrations.executor import (
    MigrationExecutor,
    MigrationOutcome,
    MigrationState,
    RunResult,
)
from schema_migrator.migrations.ledger import (
    LedgerEntry,
    LedgerStore,
    PostgresLedgerStore,
)
from schema_migrator.migrations.loader import MigrationFile, load_migrations
from schema_migrator.migrations.splitter import count_statements, split_statements
from schema_migrator.migrations.teardown import (
    TeardownReport,
    rollback_migrations,
    teardown_schema,
)

__all__ = [
    "LedgerEntry",
    "LedgerStore",
    "MigrationExecutor",
    "MigrationFile",
    "MigrationOutcome",
    "MigrationState",
    "PostgresLedgerStore",
    "RunResult",
    "TeardownReport",
    "count_statements",
    "load_migrations",
    "rollback_migrations",
    "split_statements",
    "teardown_schema",
]
