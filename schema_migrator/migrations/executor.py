"""
Migration executor: applies pending migrations exactly once, in order.

Each migration moves through a small state machine:

    PENDING -> RUNNING -> APPLIED
                       -> FAILED
    PENDING -> SKIPPED            (version already in the ledger)

A pending migration runs inside its own transaction. Every statement is
additionally wrapped in a savepoint, so a tolerable error (object already
exists / does not exist) can be rolled back on its own and execution
continues; PostgreSQL would otherwise refuse every later statement in the
aborted transaction. Any other error propagates out of the transaction
block, which rolls the whole migration back, and the run stops with
MigrationFailed. On success the ledger entry is inserted in the same
transaction before it commits.

Ascending order is the loader's job; the executor applies migrations in the
order it is given them and does not re-check it.

Example:
    >>> with connect(settings) as conn:
    ...     executor = MigrationExecutor(conn, PostgresLedgerStore(conn))
    ...     result = executor.run(load_migrations("database/migrations"))
    >>> result.applied_count
    3
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

import psycopg

from schema_migrator.exceptions import FatalStatementError, MigrationFailed
from schema_migrator.migrations.errors import (
    TolerableCondition,
    error_sqlstate,
    execute_tolerant,
)
from schema_migrator.migrations.ledger import LedgerStore
from schema_migrator.migrations.loader import MigrationFile
from schema_migrator.migrations.splitter import split_statements
from schema_migrator.utils.logging import log_with_context

logger = logging.getLogger(__name__)


class MigrationState(str, Enum):
    """Lifecycle state of one migration within a run."""

    PENDING = "pending"
    RUNNING = "running"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class MigrationOutcome:
    """
    What happened to one migration during a run.

    Attributes:
        version: Migration version
        filename: Migration filename
        state: Final state reached
        statements_executed: Statements sent to the server (tolerated ones included)
        statements_planned: Statements found by the splitter (dry runs only)
        warnings: Messages of tolerated statement errors
        duration_ms: Wall time spent applying the migration
        error: First line of the fatal error, when state is FAILED
    """

    version: int
    filename: str
    state: MigrationState = MigrationState.PENDING
    statements_executed: int = 0
    statements_planned: int = 0
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0
    error: str | None = None


@dataclass
class RunResult:
    """Outcome of one executor run over a list of migrations."""

    outcomes: list[MigrationOutcome] = field(default_factory=list)
    dry_run: bool = False

    def _count(self, state: MigrationState) -> int:
        return sum(1 for o in self.outcomes if o.state is state)

    @property
    def applied_count(self) -> int:
        return self._count(MigrationState.APPLIED)

    @property
    def skipped_count(self) -> int:
        return self._count(MigrationState.SKIPPED)

    @property
    def failed(self) -> MigrationOutcome | None:
        return next(
            (o for o in self.outcomes if o.state is MigrationState.FAILED), None
        )

    @property
    def statements_executed(self) -> int:
        return sum(o.statements_executed for o in self.outcomes)

    @property
    def warning_count(self) -> int:
        return sum(len(o.warnings) for o in self.outcomes)

    @property
    def success(self) -> bool:
        return self.failed is None


class MigrationExecutor:
    """
    Applies pending migrations against a ledger.

    The connection is held exclusively for the duration of a run. It should
    be in autocommit mode: transactions are opened explicitly with
    conn.transaction(), and nested transaction blocks become savepoints.

    Args:
        conn: psycopg Connection
        ledger: LedgerStore sharing the same connection
        dry_run: Split and count statements without executing anything or
            touching the ledger

    Attributes:
        last_result: RunResult of the most recent run(), also populated
            when run() raises MigrationFailed
    """

    def __init__(self, conn, ledger: LedgerStore, dry_run: bool = False):
        self.conn = conn
        self.ledger = ledger
        self.dry_run = dry_run
        self.last_result: RunResult | None = None

    def run(self, migrations: list[MigrationFile]) -> RunResult:
        """
        Apply every migration whose version is not yet in the ledger.

        Args:
            migrations: Migrations in the order to apply them (ascending)

        Returns:
            RunResult with one outcome per migration

        Raises:
            MigrationFailed: A statement failed fatally. The failing
                migration was rolled back and no later migration ran.
        """
        result = RunResult(dry_run=self.dry_run)
        self.last_result = result

        applied_versions = self._applied_versions()
        pending = [m for m in migrations if m.version not in applied_versions]

        if pending:
            logger.info(
                f"{'[DRY-RUN] ' if self.dry_run else ''}Found {len(pending)} "
                f"pending migrations out of {len(migrations)} total"
            )
        else:
            logger.info(f"All {len(migrations)} migrations are already applied")

        for migration in migrations:
            outcome = MigrationOutcome(
                version=migration.version, filename=migration.filename
            )
            result.outcomes.append(outcome)

            if migration.version in applied_versions:
                outcome.state = MigrationState.SKIPPED
                logger.debug(f"Skipping applied migration {migration.label}")
                continue

            if self.dry_run:
                content = self._read(migration, outcome, time.monotonic())
                outcome.statements_planned = sum(1 for _ in split_statements(content))
                logger.info(
                    f"[DRY-RUN] Would apply migration {migration.label} "
                    f"({outcome.statements_planned} statements)"
                )
                continue

            self._apply(migration, outcome)

        logger.info(
            f"Migration run complete: {result.applied_count} applied, "
            f"{result.skipped_count} skipped, {result.warning_count} warnings",
            extra={"context": {"statements_executed": result.statements_executed}},
        )
        return result

    def _applied_versions(self) -> set[int]:
        if not self.dry_run:
            self.ledger.ensure_ledger_table()
            return self.ledger.applied_versions()

        # A dry run must not create the ledger; a missing one means nothing applied
        try:
            return self.ledger.applied_versions()
        except psycopg.Error as e:
            if error_sqlstate(e) == TolerableCondition.UNDEFINED_TABLE.value:
                return set()
            raise

    def _apply(self, migration: MigrationFile, outcome: MigrationOutcome) -> None:
        outcome.state = MigrationState.RUNNING
        start_time = time.monotonic()
        logger.info(f"Applying migration {migration.label}")

        content = self._read(migration, outcome, start_time)

        try:
            with self.conn.transaction():
                for index, statement in enumerate(split_statements(content), 1):
                    self._execute_statement(migration, outcome, index, statement)
                self.ledger.record_applied(migration.version, migration.filename)
        except MigrationFailed as e:
            self._mark_failed(outcome, e.cause or e, start_time)
            raise
        except psycopg.Error as e:
            # Ledger insert or COMMIT failed; the transaction is gone either way
            self._mark_failed(outcome, e, start_time)
            raise MigrationFailed(
                migration.version,
                migration.filename,
                cause=e,
                sqlstate=error_sqlstate(e),
            ) from e

        outcome.state = MigrationState.APPLIED
        outcome.duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Applied migration {migration.label} in {outcome.duration_ms}ms",
            extra={
                "context": {
                    "statements": outcome.statements_executed,
                    "warnings": len(outcome.warnings),
                }
            },
        )

    def _read(
        self, migration: MigrationFile, outcome: MigrationOutcome, start_time: float
    ) -> str:
        # Unreadable or non-UTF-8 scripts fail the migration like a bad statement
        try:
            return migration.read_content()
        except (OSError, UnicodeDecodeError) as e:
            self._mark_failed(outcome, e, start_time)
            raise MigrationFailed(migration.version, migration.filename, cause=e) from e

    def _execute_statement(
        self,
        migration: MigrationFile,
        outcome: MigrationOutcome,
        index: int,
        statement: str,
    ) -> None:
        outcome.statements_executed += 1
        try:
            tolerated = execute_tolerant(self.conn, statement)
        except FatalStatementError as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Statement {index} of {migration.filename} failed: {e}",
                context={"sqlstate": e.sqlstate, "statement": statement[:200]},
                migration_version=migration.version,
            )
            raise MigrationFailed(
                migration.version,
                migration.filename,
                cause=e.__cause__ or e,
                statement=statement,
                sqlstate=e.sqlstate,
            ) from e

        if tolerated is not None:
            outcome.warnings.append(str(tolerated))
            log_with_context(
                logger,
                logging.WARNING,
                f"Tolerated error in statement {index} of {migration.filename}: {tolerated}",
                context={"sqlstate": tolerated.sqlstate},
                migration_version=migration.version,
            )
            return

        logger.debug(f"  Executed statement {index} of {migration.filename}")

    @staticmethod
    def _mark_failed(
        outcome: MigrationOutcome, cause: BaseException, start_time: float
    ) -> None:
        outcome.state = MigrationState.FAILED
        outcome.duration_ms = int((time.monotonic() - start_time) * 1000)
        text = str(cause).strip()
        outcome.error = text.splitlines()[0] if text else type(cause).__name__
