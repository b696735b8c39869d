"""
Rich console utilities for dual-mode CLI output.

Provides readable terminal output for humans and structured JSON for scripts
and CI jobs. All output functions adapt to the global output_mode setting.

This module provides:
- OutputMode: Class to manage output format (text/json/quiet)
- Context managers: spinner()
- Output functions: success(), error(), warning(), info()
- Display functions: print_banner(), print_run_table(), print_status_table(),
  print_validation_report(), print_harness_summary()

Human Mode (--format text):
    - Rich spinners and colored tables
    - Panels for final summaries

Agent Mode (--format json):
    - One JSON document on stdout per command
    - No ANSI codes or spinners

Quiet Mode (--quiet):
    - Tab-separated values, no decorations

Examples:
    >>> from schema_migrator.utils.console import output_mode, spinner, success
    >>> with spinner("Applying migrations..."):
    ...     result = executor.run(migrations)
    >>> success("Schema is current")

    >>> output_mode.format = "json"
    >>> success("Schema is current")  # Buffers to JSON
    >>> output_mode.flush_json()      # Outputs JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schema_migrator.utils.time import format_timestamp

if TYPE_CHECKING:
    from schema_migrator.harness.runner import HarnessResult
    from schema_migrator.migrations.executor import RunResult
    from schema_migrator.migrations.ledger import LedgerEntry
    from schema_migrator.migrations.loader import MigrationFile
    from schema_migrator.schema.validator import ValidationReport


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: Output format - "text" (human) or "json" (agent)
        quiet: If True, suppress non-essential output
        _json_buffer: Internal buffer for JSON output in agent mode

    Examples:
        >>> mode = OutputMode()
        >>> mode.is_human()
        True
        >>> mode.format = "json"
        >>> mode.is_agent()
        True
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        """
        Initialize output mode.

        Args:
            format_type: Output format - "text" for human, "json" for agent
            quiet: If True, suppress non-essential output

        Raises:
            ValueError: If format_type is not "text" or "json"
        """
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """
        Add key-value pair to JSON buffer.

        Used in agent mode to accumulate structured data before final output
        via flush_json().
        """
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Output buffered JSON to stdout and clear buffer.

        Only outputs in agent mode. In human mode, this is a no-op.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Context manager for showing a spinner during operations.

    Displays a Rich spinner with message in human mode. Silent otherwise.

    Args:
        message: Status message to display

    Yields:
        Status context in human mode, None in agent/quiet mode
    """
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    """
    Print a success message.

    Human mode: Green checkmark with message
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """
    Print an error message.

    Human mode: Red X with message to stderr
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    """
    Print a warning message.

    Human mode: Yellow warning symbol with message
    Agent mode: Appended to the "warnings" list in the JSON buffer
    """
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode._json_buffer.setdefault("warnings", []).append(message)


def info(message: str) -> None:
    """Print an info message (human mode only, silent when quiet)."""
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_banner(version: str) -> None:
    """Print the startup banner (human mode only)."""
    if not output_mode.is_human() or output_mode.quiet:
        return

    banner = f"""
[bold cyan]╔{"═" * 39}╗
║   Schema Migrator v{version:<18} ║
║   PostgreSQL migrations, verified     ║
╚{"═" * 39}╝[/bold cyan]
"""

    console.print(banner)


_STATE_STYLES = {
    "applied": "green",
    "skipped": "dim",
    "failed": "red",
    "pending": "yellow",
    "running": "blue",
}


def print_run_table(result: RunResult, title: str = "Migration Run") -> None:
    """
    Print one row per migration with its outcome.

    Human mode: Rich table with colored state
    Agent mode: Buffer outcomes as JSON array
    Quiet mode: Tab-separated version, state, statements
    """
    rows = [
        {
            "version": o.version,
            "filename": o.filename,
            "state": o.state.value,
            "statements": o.statements_planned if result.dry_run else o.statements_executed,
            "warnings": o.warnings,
            "duration_ms": o.duration_ms,
            "error": o.error,
        }
        for o in result.outcomes
    ]

    if output_mode.is_agent():
        output_mode.add_json("dry_run", result.dry_run)
        output_mode.add_json("migrations", rows)
        output_mode.add_json("statements_executed", result.statements_executed)
        return

    if output_mode.quiet:
        for row in rows:
            print(f"{row['version']}\t{row['state']}\t{row['statements']}")
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Version", justify="right", style="cyan", no_wrap=True)
    table.add_column("Migration", style="magenta")
    table.add_column("State", justify="center")
    table.add_column("Planned" if result.dry_run else "Statements", justify="right")
    table.add_column("Warnings", justify="right")
    table.add_column("Time", justify="right", style="green")

    for row in rows:
        style = _STATE_STYLES.get(row["state"], "yellow")
        table.add_row(
            f"{row['version']:03d}",
            row["filename"],
            f"[{style}]{row['state']}[/{style}]",
            str(row["statements"]),
            str(len(row["warnings"])) if row["warnings"] else "-",
            f"{row['duration_ms']}ms" if row["duration_ms"] else "-",
        )

    console.print(table)


def print_status_table(
    migrations: list[MigrationFile], entries: list[LedgerEntry]
) -> None:
    """
    Print applied vs pending migrations.

    Ledger entries whose version has no file on disk are listed as
    "orphaned" so a deleted migration is noticed.
    """
    applied = {entry.version: entry for entry in entries}
    known = {m.version for m in migrations}
    rows = []
    for migration in migrations:
        entry = applied.get(migration.version)
        rows.append(
            {
                "version": migration.version,
                "filename": migration.filename,
                "state": "applied" if entry else "pending",
                "executed_at": format_timestamp(entry.executed_at) if entry else "-",
                "rollback": migration.down_path is not None,
            }
        )
    for version in sorted(set(applied) - known):
        rows.append(
            {
                "version": version,
                "filename": applied[version].filename,
                "state": "orphaned",
                "executed_at": format_timestamp(applied[version].executed_at),
                "rollback": False,
            }
        )

    if output_mode.is_agent():
        output_mode.add_json("migrations", rows)
        output_mode.add_json(
            "pending", [r["version"] for r in rows if r["state"] == "pending"]
        )
        return

    if output_mode.quiet:
        for row in rows:
            print(f"{row['version']}\t{row['state']}\t{row['filename']}")
        return

    table = Table(title="Migration Status", box=box.ROUNDED)
    table.add_column("Version", justify="right", style="cyan", no_wrap=True)
    table.add_column("Migration", style="magenta")
    table.add_column("State", justify="center")
    table.add_column("Executed At")
    table.add_column("Rollback", justify="center")

    for row in rows:
        style = _STATE_STYLES.get(row["state"], "red")
        table.add_row(
            f"{row['version']:03d}",
            row["filename"],
            f"[{style}]{row['state']}[/{style}]",
            row["executed_at"],
            "[green]✓[/green]" if row["rollback"] else "[dim]-[/dim]",
        )

    console.print(table)


def print_validation_report(report: ValidationReport) -> None:
    """Print the outcome of a schema validation pass."""
    if output_mode.is_agent():
        output_mode.add_json("validation", report.to_dict())
        return

    if output_mode.quiet:
        print(
            f"{'passed' if report.passed else 'failed'}\t"
            f"{len(report.missing_tables)}\t{len(report.missing_columns)}\t"
            f"{report.index_count}"
        )
        return

    table = Table(title="Schema Validation", box=box.ROUNDED, show_header=True)
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Present", justify="right", style="green")
    table.add_column("Missing")

    def _missing(names: list[str]) -> str:
        return f"[red]{', '.join(names)}[/red]" if names else "[green]-[/green]"

    table.add_row("Tables", str(len(report.found_tables)), _missing(report.missing_tables))
    table.add_row(
        "Required columns",
        "",
        _missing(
            [f"{t}.{c}" for t, cols in report.missing_columns.items() for c in cols]
        ),
    )
    table.add_row(
        "Extensions", str(len(report.present_extensions)), _missing(report.missing_extensions)
    )
    table.add_row("Enums", str(len(report.present_enums)), _missing(report.missing_enums))
    table.add_row(
        "Functions", str(len(report.present_functions)), _missing(report.missing_functions)
    )
    table.add_row("Indexes", str(report.index_count), "")

    console.print(table)


def print_harness_summary(result: HarnessResult) -> None:
    """
    Print the final summary of a harness run.

    Human mode: Panel with green border on success, red on failure
    Agent mode: Flush all buffered JSON including these final stats
    Quiet mode: Tab-separated state, database, warnings
    """
    if output_mode.is_agent():
        output_mode.add_json("state", result.state.value)
        output_mode.add_json("history", [s.value for s in result.history])
        output_mode.add_json("database", result.database)
        output_mode.add_json("database_dropped", result.database_dropped)
        output_mode.add_json("failed_stage", result.failed_stage.value if result.failed_stage else None)
        output_mode.add_json("error", result.error)
        output_mode.add_json("cleanup_error", result.cleanup_error)
        output_mode.add_json("harness_warnings", result.warnings)
        output_mode.add_json("duration_ms", result.duration_ms)
        output_mode.flush_json()
        return

    if output_mode.quiet:
        print(f"{result.state.value}\t{result.database}\t{len(result.warnings)}")
        return

    for message in result.warnings:
        warning(message)

    applied = sum(
        run.applied_count
        for run in (result.base_run, result.incremental_run)
        if run is not None
    )
    summary_text = f"""
[bold]Database:[/bold] {result.database} ({"dropped" if result.database_dropped else "NOT dropped"})
[bold]Stages:[/bold] {" → ".join(s.value for s in result.history)}
[bold]Migrations applied:[/bold] {applied}
[bold]Warnings:[/bold] {len(result.warnings)}
[bold]Duration:[/bold] {result.duration_ms}ms
"""
    if result.error:
        summary_text += f"[bold]Error:[/bold] {result.error}\n"
    if result.cleanup_error:
        summary_text += f"[bold]Cleanup:[/bold] {result.cleanup_error}\n"

    if result.success:
        border_style = "green"
        title = "[bold green]✓ All migration tests passed[/bold green]"
    else:
        border_style = "red"
        title = "[bold red]✗ Migration tests failed[/bold red]"

    console.print(
        Panel(summary_text.strip(), title=title, border_style=border_style, box=box.ROUNDED)
    )
