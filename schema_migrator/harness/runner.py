"""
End-to-end migration test harness.

Verifies a migration set against a throwaway database:

    INIT -> DB_CREATED -> CONNECTED -> UP_APPLIED -> VALIDATED
         -> DOWN_ATTEMPTED -> CLEANED_UP -> SUCCESS

Any error before cleanup jumps straight to CLEANED_UP and ends in FAILURE.
The ephemeral database is dropped on every path, including failures, from
a ``finally`` block; a failed drop is logged as a CleanupError and never
masks the primary result.

UP pass:
    1. Baseline bootstrap (extensions, enums, base tables from baseline.yaml)
    2. Base migration set, tracked in the ``base_schema_migrations`` ledger
    3. Incremental migration set, tracked in ``schema_migrations``

DOWN pass:
    Down scripts newest first, then the coarse drop plan, then the ledgers
    are wiped and dropped. Every base table still in the schema afterwards
    is reported. Problems here are warnings, not failures: not
    every migration ships a rollback script.

Example:
    >>> harness = MigrationTestHarness(settings, "database/migrations")
    >>> result = harness.run()
    >>> result.state
    <HarnessState.SUCCESS: 'success'>
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import psycopg

from schema_migrator.config.constants import (
    ADMIN_DATABASE,
    BASE_LEDGER_TABLE,
    EPHEMERAL_DB_SUFFIX,
)
from schema_migrator.config.loader import load_baseline, load_expectation
from schema_migrator.config.schema import (
    BaselineSchema,
    DatabaseSettings,
    SchemaExpectation,
)
from schema_migrator.db.connection import connect as default_connect
from schema_migrator.db.connection import create_database, drop_database
from schema_migrator.exceptions import (
    CleanupError,
    FatalStatementError,
    SchemaMigratorError,
    SchemaValidationError,
)
from schema_migrator.migrations.executor import MigrationExecutor, RunResult
from schema_migrator.migrations.ledger import PostgresLedgerStore
from schema_migrator.migrations.loader import MigrationFile, load_migrations
from schema_migrator.migrations.teardown import (
    TeardownReport,
    find_remaining_tables,
    rollback_migrations,
    teardown_schema,
)
from schema_migrator.schema.baseline import BaselineResult, apply_baseline
from schema_migrator.schema.validator import SchemaValidator, ValidationReport
from schema_migrator.utils.time import utc_now

logger = logging.getLogger(__name__)


class HarnessState(str, Enum):
    """Stages of one harness run."""

    INIT = "init"
    DB_CREATED = "db_created"
    CONNECTED = "connected"
    UP_APPLIED = "up_applied"
    VALIDATED = "validated"
    DOWN_ATTEMPTED = "down_attempted"
    CLEANED_UP = "cleaned_up"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class HarnessResult:
    """
    Everything one harness run observed.

    Attributes:
        database: Ephemeral database name
        state: Final state (SUCCESS or FAILURE once run() returns)
        history: Every state visited, in order
        failed_stage: Last state reached before the error, on failure
        error: Message of the error that ended the run, on failure
        warnings: Non-fatal findings (tolerated errors, missing down scripts,
            tables left after teardown, missing enums/functions/extensions)
        cleanup_error: Message of a failed database drop
        database_dropped: Whether the ephemeral database was dropped
    """

    database: str
    state: HarnessState = HarnessState.INIT
    history: list[HarnessState] = field(default_factory=lambda: [HarnessState.INIT])
    baseline: BaselineResult | None = None
    base_run: RunResult | None = None
    incremental_run: RunResult | None = None
    validation: ValidationReport | None = None
    teardown: TeardownReport | None = None
    warnings: list[str] = field(default_factory=list)
    failed_stage: HarnessState | None = None
    error: str | None = None
    cleanup_error: str | None = None
    database_dropped: bool = False
    started_at: str = ""
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.state is HarnessState.SUCCESS


class MigrationTestHarness:
    """
    Runs UP, validation and DOWN against an ephemeral database.

    Args:
        settings: Connection settings; the ephemeral database is named
            ``<settings.name>_migration_test``
        incremental_dir: Directory of incremental migrations
        base_dir: Optional directory of base migrations run right after the
            baseline bootstrap
        expectation: Schema expectation (packaged default when None)
        baseline: Baseline schema (packaged default when None)
        connect: Connection factory with the signature of
            db.connection.connect, replaceable in tests
        on_state: Called with each new state as the run advances
    """

    def __init__(
        self,
        settings: DatabaseSettings,
        incremental_dir: str | Path,
        base_dir: str | Path | None = None,
        expectation: SchemaExpectation | None = None,
        baseline: BaselineSchema | None = None,
        connect: Callable = default_connect,
        on_state: Callable[[HarnessState], None] | None = None,
    ):
        self.settings = settings
        self.incremental_dir = Path(incremental_dir)
        self.base_dir = Path(base_dir) if base_dir else None
        self.expectation = expectation if expectation is not None else load_expectation()
        self.baseline = baseline if baseline is not None else load_baseline()
        self._connect = connect
        self._on_state = on_state

    def _advance(self, result: HarnessResult, state: HarnessState) -> None:
        result.state = state
        result.history.append(state)
        logger.debug(f"Harness state -> {state.value}")
        if self._on_state is not None:
            self._on_state(state)

    def run(self) -> HarnessResult:
        """
        Execute the full harness.

        Returns:
            HarnessResult in state SUCCESS or FAILURE. Errors are captured on
            the result rather than raised.
        """
        started = utc_now()
        database = f"{self.settings.name}{EPHEMERAL_DB_SUFFIX}"
        result = HarnessResult(
            database=database, started_at=started.strftime("%Y-%m-%dT%H:%M:%SZ")
        )
        admin_conn = None
        conn = None

        logger.info(f"Starting migration test harness on database {database}")

        try:
            # Name and discovery checks fail before any database work
            database = self.settings.ephemeral_name
            base_migrations = load_migrations(self.base_dir) if self.base_dir else []
            migrations = load_migrations(self.incremental_dir)

            admin_conn = self._connect(self.settings, dbname=ADMIN_DATABASE)
            create_database(admin_conn, database)
            self._advance(result, HarnessState.DB_CREATED)

            conn = self._connect(self.settings, dbname=database)
            self._advance(result, HarnessState.CONNECTED)

            self._up(conn, base_migrations, migrations, result)
            self._advance(result, HarnessState.UP_APPLIED)

            self._validate(conn, result)
            self._advance(result, HarnessState.VALIDATED)

            self._down(conn, base_migrations, migrations, result)
            self._advance(result, HarnessState.DOWN_ATTEMPTED)

        except (SchemaMigratorError, psycopg.Error) as e:
            result.failed_stage = result.state
            result.error = str(e)
            if isinstance(e, SchemaValidationError) and e.report is not None:
                result.validation = e.report
            logger.error(
                f"Migration test failed after {result.state.value}: {e}",
                exc_info=not isinstance(e, SchemaMigratorError),
            )
        finally:
            self._cleanup(admin_conn, conn, database, result)
            self._advance(result, HarnessState.CLEANED_UP)

        final = HarnessState.FAILURE if result.error else HarnessState.SUCCESS
        self._advance(result, final)
        result.duration_ms = int((utc_now() - started).total_seconds() * 1000)

        logger.info(
            f"Migration test harness finished: {final.value}",
            extra={
                "context": {
                    "database": database,
                    "warnings": len(result.warnings),
                    "database_dropped": result.database_dropped,
                }
            },
        )
        return result

    def _up(
        self,
        conn,
        base_migrations: list[MigrationFile],
        migrations: list[MigrationFile],
        result: HarnessResult,
    ) -> None:
        result.baseline = apply_baseline(conn, self.baseline)
        result.warnings.extend(result.baseline.tolerated)

        if base_migrations:
            logger.info(f"Running {len(base_migrations)} base migrations")
            executor = MigrationExecutor(
                conn, PostgresLedgerStore(conn, table_name=BASE_LEDGER_TABLE)
            )
            try:
                executor.run(base_migrations)
            finally:
                result.base_run = executor.last_result

        logger.info(f"Running {len(migrations)} incremental migrations")
        executor = MigrationExecutor(conn, PostgresLedgerStore(conn))
        try:
            executor.run(migrations)
        finally:
            result.incremental_run = executor.last_result

        for run in (result.base_run, result.incremental_run):
            if run is not None:
                for outcome in run.outcomes:
                    result.warnings.extend(
                        f"{outcome.filename}: {warning}" for warning in outcome.warnings
                    )

    def _validate(self, conn, result: HarnessResult) -> None:
        report = SchemaValidator(conn).validate(self.expectation)
        result.validation = report
        result.warnings.extend(report.warnings)
        if not report.passed:
            raise SchemaValidationError(
                f"Missing tables: {', '.join(report.missing_tables)}", report=report
            )

    def _down(
        self,
        conn,
        base_migrations: list[MigrationFile],
        migrations: list[MigrationFile],
        result: HarnessResult,
    ) -> None:
        report = TeardownReport()
        result.teardown = report
        ledgers = [(migrations, PostgresLedgerStore(conn))]
        # The base ledger only exists when a base set was applied
        if base_migrations:
            ledgers.append(
                (base_migrations, PostgresLedgerStore(conn, table_name=BASE_LEDGER_TABLE))
            )

        try:
            for set_migrations, ledger in ledgers:
                rollback_migrations(conn, set_migrations, ledger, report)
            teardown_schema(conn, self.baseline.teardown, report=report)
            for _, ledger in ledgers:
                ledger.wipe_ledger()
                ledger.drop_ledger_table()
        except (FatalStatementError, psycopg.Error) as e:
            result.warnings.append(f"DOWN pass incomplete: {e}")
            logger.warning(f"DOWN pass incomplete: {e}")

        report.remaining_tables = find_remaining_tables(conn)

        if report.missing_down_scripts:
            result.warnings.append(
                "No rollback script available for: "
                + ", ".join(report.missing_down_scripts)
            )
        if report.failed_down_scripts:
            result.warnings.append(
                "Rollback scripts failed: " + ", ".join(report.failed_down_scripts)
            )
        if report.remaining_tables:
            result.warnings.append(
                f"{len(report.remaining_tables)} tables still exist after rollback: "
                + ", ".join(report.remaining_tables)
            )
        result.warnings.extend(report.tolerated)

    def _cleanup(self, admin_conn, conn, database: str, result: HarnessResult) -> None:
        if conn is not None:
            try:
                conn.close()
            except psycopg.Error as e:
                logger.warning(f"Error closing connection to {database}: {e}")

        if admin_conn is None:
            logger.debug("No admin connection, nothing to clean up")
            return

        try:
            drop_database(admin_conn, database)
            result.database_dropped = True
        except (psycopg.Error, SchemaMigratorError) as e:
            error = CleanupError(f"Could not drop ephemeral database {database}: {e}")
            result.cleanup_error = str(error)
            logger.error(str(error))
        finally:
            try:
                admin_conn.close()
            except psycopg.Error as e:
                logger.warning(f"Error closing admin connection: {e}")
