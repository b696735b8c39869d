"""
CLI entrypoint for schema-migrator.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables, colored text
- Agent-friendly output: Structured JSON for CI jobs and scripts
- Quiet mode: Tab-separated minimal output for shell scripts

Commands:
    migrate: Apply pending migrations to the target database
    status: Show applied and pending migrations
    validate: Check the live schema against a schema expectation
    verify: Run UP, validation and DOWN against an ephemeral database
    split: Print the statements a migration file splits into

Exit codes:
    0: Success - the schema is current / checks passed
    1: Configuration or discovery error (bad env vars, bad migration files)
    2: Database connection error
    3: Migration failed (rolled back, run stopped)
    4: Schema validation failed or the test harness failed

Examples:
    # Apply migrations using DB_* environment variables
    schema-migrator migrate --migrations-dir database/migrations

    # Preview without executing
    schema-migrator migrate -d database/migrations --dry-run

    # Full UP/DOWN verification for CI, JSON output
    schema-migrator verify -d database/migrations --format json

Security:
    - Connection credentials are read from environment variables only
    - Passwords are redacted from log output
"""

from pathlib import Path

import psycopg
import typer
from rich.traceback import install as install_rich_traceback

from schema_migrator.config.constants import ENV_MIGRATIONS_DIR, LEDGER_TABLE
from schema_migrator.config.loader import (
    load_baseline,
    load_database_settings,
    load_expectation,
)
from schema_migrator.db.connection import connect
from schema_migrator.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    DiscoveryError,
    MigrationFailed,
    SchemaValidationError,
)
from schema_migrator.harness.runner import HarnessState, MigrationTestHarness
from schema_migrator.migrations.errors import TolerableCondition, error_sqlstate
from schema_migrator.migrations.executor import MigrationExecutor, MigrationState
from schema_migrator.migrations.ledger import PostgresLedgerStore
from schema_migrator.migrations.loader import load_migrations
from schema_migrator.migrations.splitter import split_statements
from schema_migrator.schema.validator import SchemaValidator
from schema_migrator.utils.console import (
    console,
    error,
    info,
    output_mode,
    print_banner,
    print_harness_summary,
    print_run_table,
    print_status_table,
    print_validation_report,
    spinner,
    success,
    warning,
)
from schema_migrator.utils.logging import setup_logging

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0  # Schema current / checks passed
EXIT_CONFIG_ERROR = 1  # Configuration or discovery error
EXIT_DB_ERROR = 2  # Could not connect to PostgreSQL
EXIT_MIGRATION_FAILED = 3  # A migration failed and was rolled back
EXIT_VALIDATION_FAILED = 4  # Schema validation or harness failure

# Create Typer app
app = typer.Typer(
    name="schema-migrator",
    help="Apply and verify versioned PostgreSQL schema migrations",
    add_completion=False,
)


def _configure_output(format: str, quiet: bool, verbose: bool) -> None:
    if format not in ("text", "json"):
        raise typer.BadParameter(
            f"Invalid format: {format}. Must be 'text' or 'json'", param_hint="--format"
        )
    output_mode.format = format
    output_mode.quiet = quiet

    # Keep structured logs off the terminal in human mode unless asked for
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())


def _fail(message: str, exit_code: int) -> typer.Exit:
    """Report an error, flush JSON output and build the exit to raise."""
    error(message)
    output_mode.flush_json()
    return typer.Exit(exit_code)


def _load_settings():
    try:
        return load_database_settings()
    except ConfigurationError as e:
        raise _fail(f"Invalid database settings: {e}", EXIT_CONFIG_ERROR) from e


def _load_migrations(migrations_dir: Path):
    try:
        return load_migrations(migrations_dir)
    except DiscoveryError as e:
        raise _fail(str(e), EXIT_CONFIG_ERROR) from e


@app.command()
def migrate(
    migrations_dir: Path = typer.Option(
        ...,
        "--migrations-dir",
        "-d",
        envvar=ENV_MIGRATIONS_DIR,
        help="Directory containing <version>_<description>.sql files",
        file_okay=False,
        dir_okay=True,
    ),
    ledger_table: str = typer.Option(
        LEDGER_TABLE,
        "--ledger-table",
        help="Name of the ledger table recording applied versions",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show pending migrations and statement counts without executing",
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Minimal output (tab-separated values)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Apply pending migrations to the target database.

    Each migration runs in its own transaction together with its ledger
    entry. Already-applied versions are skipped, so running this twice is
    safe. The first fatal error rolls back that migration and stops.

    Exit codes:
      0: Schema is current
      1: Configuration or discovery error
      2: Database connection error
      3: A migration failed

    Examples:
      schema-migrator migrate -d database/migrations
      schema-migrator migrate -d database/migrations --dry-run --format json
    """
    _configure_output(format, quiet, verbose)
    print_banner(_read_version())

    settings = _load_settings()
    migrations = _load_migrations(migrations_dir)
    info(f"Found {len(migrations)} migrations in {migrations_dir}")

    try:
        with connect(settings) as conn:
            ledger = PostgresLedgerStore(conn, table_name=ledger_table)
            executor = MigrationExecutor(conn, ledger, dry_run=dry_run)
            label = "Planning migrations..." if dry_run else "Applying migrations..."
            try:
                with spinner(label):
                    result = executor.run(migrations)
            except MigrationFailed as e:
                if executor.last_result is not None:
                    print_run_table(executor.last_result)
                raise _fail(str(e), EXIT_MIGRATION_FAILED) from e

    except DatabaseConnectionError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    except ConfigurationError as e:
        raise _fail(str(e), EXIT_CONFIG_ERROR) from e
    except psycopg.Error as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR) from e

    print_run_table(result)
    for outcome in result.outcomes:
        for message in outcome.warnings:
            warning(f"{outcome.filename}: {message}")

    if dry_run:
        pending = sum(1 for o in result.outcomes if o.state is MigrationState.PENDING)
        success(f"[DRY-RUN] {pending} migrations would be applied")
    elif result.applied_count:
        success(
            f"Applied {result.applied_count} migrations "
            f"({result.statements_executed} statements)"
        )
    else:
        success("Schema is current, nothing to apply")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def status(
    migrations_dir: Path = typer.Option(
        ...,
        "--migrations-dir",
        "-d",
        envvar=ENV_MIGRATIONS_DIR,
        help="Directory containing <version>_<description>.sql files",
        file_okay=False,
        dir_okay=True,
    ),
    ledger_table: str = typer.Option(
        LEDGER_TABLE, "--ledger-table", help="Name of the ledger table"
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Show which migrations are applied and which are pending.

    Read-only: a missing ledger table means nothing has been applied yet.

    Exit codes:
      0: Status printed
      1: Configuration or discovery error
      2: Database connection error
    """
    _configure_output(format, quiet, verbose)

    settings = _load_settings()
    migrations = _load_migrations(migrations_dir)

    try:
        with connect(settings) as conn:
            ledger = PostgresLedgerStore(conn, table_name=ledger_table)
            try:
                entries = ledger.entries()
            except psycopg.Error as e:
                if error_sqlstate(e) != TolerableCondition.UNDEFINED_TABLE.value:
                    raise
                entries = []
                info(f"Ledger table {ledger_table} does not exist yet")
    except DatabaseConnectionError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    except ConfigurationError as e:
        raise _fail(str(e), EXIT_CONFIG_ERROR) from e
    except psycopg.Error as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR) from e

    print_status_table(migrations, entries)

    applied = {entry.version for entry in entries}
    pending = [m for m in migrations if m.version not in applied]
    if pending:
        info(f"{len(pending)} pending migrations")
    else:
        success("Schema is current")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def validate(
    expectation: Path | None = typer.Option(
        None,
        "--expectation",
        "-e",
        help="Schema expectation YAML (defaults to the packaged expectation)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Check the live schema against a schema expectation.

    Missing tables or required columns fail; missing enums, functions and
    extensions are reported as warnings.

    Exit codes:
      0: Schema matches the expectation
      1: Configuration error
      2: Database connection error
      4: Validation failed
    """
    _configure_output(format, quiet, verbose)

    settings = _load_settings()
    try:
        schema_expectation = load_expectation(expectation)
    except ConfigurationError as e:
        raise _fail(f"Invalid schema expectation: {e}", EXIT_CONFIG_ERROR) from e

    try:
        with connect(settings) as conn:
            with spinner("Reading catalog..."):
                report = SchemaValidator(conn).validate(schema_expectation)
    except SchemaValidationError as e:
        if e.report is not None:
            print_validation_report(e.report)
        raise _fail(str(e), EXIT_VALIDATION_FAILED) from e
    except DatabaseConnectionError as e:
        raise _fail(str(e), EXIT_DB_ERROR) from e
    except psycopg.Error as e:
        raise _fail(f"Database error: {e}", EXIT_DB_ERROR) from e

    print_validation_report(report)
    for line in report.warnings:
        warning(line)

    if not report.passed:
        raise _fail(
            f"Missing tables: {', '.join(report.missing_tables)}", EXIT_VALIDATION_FAILED
        )

    success("Schema validation passed")
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def verify(
    migrations_dir: Path = typer.Option(
        ...,
        "--migrations-dir",
        "-d",
        envvar=ENV_MIGRATIONS_DIR,
        help="Directory of incremental migrations",
        file_okay=False,
        dir_okay=True,
    ),
    base_dir: Path | None = typer.Option(
        None,
        "--base-dir",
        "-b",
        help="Directory of base migrations run after the baseline bootstrap",
        file_okay=False,
        dir_okay=True,
    ),
    expectation: Path | None = typer.Option(
        None,
        "--expectation",
        "-e",
        help="Schema expectation YAML (defaults to the packaged expectation)",
        exists=True,
        dir_okay=False,
    ),
    baseline: Path | None = typer.Option(
        None,
        "--baseline",
        help="Baseline schema YAML (defaults to the packaged baseline)",
        exists=True,
        dir_okay=False,
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Verify migrations end to end against an ephemeral database.

    Creates <DB_NAME>_migration_test, bootstraps the baseline schema, applies
    the base and incremental migrations, validates the result, rolls
    everything back, and drops the database again, even on failure.

    Exit codes:
      0: All stages passed
      1: Configuration error
      4: Harness failure (see the summary for the failed stage)
    """
    _configure_output(format, quiet, verbose)
    print_banner(_read_version())

    settings = _load_settings()
    try:
        ephemeral = settings.ephemeral_name
        schema_expectation = load_expectation(expectation)
        baseline_schema = load_baseline(baseline)
    except ConfigurationError as e:
        raise _fail(str(e), EXIT_CONFIG_ERROR) from e

    info(f"Testing migrations in ephemeral database {ephemeral}")

    with spinner("Running migration tests...") as status:

        def _on_state(state: HarnessState) -> None:
            if status is not None:
                status.update(f"[bold blue]Migration tests: {state.value}")

        harness = MigrationTestHarness(
            settings,
            incremental_dir=migrations_dir,
            base_dir=base_dir,
            expectation=schema_expectation,
            baseline=baseline_schema,
            on_state=_on_state,
        )
        result = harness.run()

    if result.incremental_run is not None:
        print_run_table(result.incremental_run, title="Incremental Migrations")
    if result.validation is not None:
        print_validation_report(result.validation)
    print_harness_summary(result)

    raise typer.Exit(EXIT_SUCCESS if result.success else EXIT_VALIDATION_FAILED)


@app.command()
def split(
    file: Path = typer.Argument(
        ...,
        help="SQL file to split",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
):
    """
    Print the statements a migration file splits into.

    A debugging aid for dollar-quoted function bodies: each statement is
    shown exactly as it will be sent to the server.
    """
    _configure_output(format, False, False)

    try:
        content = file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise _fail(f"Could not read {file}: {e}", EXIT_CONFIG_ERROR) from e

    statements = list(split_statements(content))

    if output_mode.is_agent():
        output_mode.add_json("file", str(file))
        output_mode.add_json("statements", statements)
        output_mode.flush_json()
        raise typer.Exit(EXIT_SUCCESS)

    for index, statement in enumerate(statements, 1):
        console.rule(f"[cyan]Statement {index}")
        console.print(statement, markup=False, highlight=False)
    console.rule()
    info(f"{len(statements)} statements")
    raise typer.Exit(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    Schema Migrator - versioned PostgreSQL migrations with verification.

    Connection settings come from DB_HOST, DB_PORT, DB_NAME, DB_USERNAME,
    DB_PASSWORD and DB_SSL.

    Exit codes:
      0: Success
      1: Configuration or discovery error
      2: Database connection error
      3: Migration failed
      4: Validation or harness failure

    Use 'schema-migrator COMMAND --help' for detailed command documentation.
    """
    if version:
        console.print(
            f"[bold cyan]schema-migrator[/bold cyan] version {_read_version()}"
        )
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Commands:")
        console.print("  migrate   Apply pending migrations")
        console.print("  status    Show applied and pending migrations")
        console.print("  validate  Check the live schema against an expectation")
        console.print("  verify    Run UP/validate/DOWN against an ephemeral database")
        console.print("  split     Print the statements of one SQL file")


def _read_version() -> str:
    """Read version from package metadata (pyproject.toml)."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("schema-migrator")
    except PackageNotFoundError:
        # Running from a source checkout without installation
        return "0.1.0"


if __name__ == "__main__":
    app()
