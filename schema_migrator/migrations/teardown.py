"""
Rollback and teardown (the DOWN pass).

Two mechanisms, used in this order by the test harness:

1. rollback_migrations() runs each applied migration's optional
   ``.down.sql`` script, newest first. Migrations without one are reported
   as having no rollback script available rather than silently skipped.
2. teardown_schema() runs the coarse, dependency-ordered drop plan from
   baseline.yaml (tables, then materialized views, then supplementary
   tables), every drop ``IF EXISTS ... CASCADE`` and tolerant of objects
   that are already gone.

Neither removes ledger rows; callers wipe the ledger afterwards.
"""

import logging
from dataclasses import dataclass, field

from psycopg import sql

from schema_migrator.config.constants import DEFAULT_SCHEMA
from schema_migrator.config.schema import TeardownPlan
from schema_migrator.config.validators import validate_identifier
from schema_migrator.exceptions import FatalStatementError
from schema_migrator.migrations.errors import execute_tolerant
from schema_migrator.migrations.ledger import LedgerStore
from schema_migrator.migrations.loader import MigrationFile
from schema_migrator.migrations.splitter import split_statements

logger = logging.getLogger(__name__)


@dataclass
class TeardownReport:
    """
    What the DOWN pass did.

    Attributes:
        rolled_back: Versions whose down script committed, newest first
        missing_down_scripts: Applied migrations with no rollback script
        failed_down_scripts: Down scripts that hit a fatal error (rolled back)
        dropped: Objects targeted by the coarse drop plan
        tolerated: Messages of tolerated errors across both passes
        remaining_tables: Base tables still present afterwards
    """

    rolled_back: list[int] = field(default_factory=list)
    missing_down_scripts: list[str] = field(default_factory=list)
    failed_down_scripts: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    tolerated: list[str] = field(default_factory=list)
    remaining_tables: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failed_down_scripts and not self.remaining_tables


def rollback_migrations(
    conn,
    migrations: list[MigrationFile],
    ledger: LedgerStore,
    report: TeardownReport | None = None,
) -> TeardownReport:
    """
    Run the down scripts of applied migrations in descending version order.

    Each down script runs in its own transaction, statement by statement
    inside savepoints, tolerating the same error classes as the UP pass. A
    fatal error rolls that script back, is recorded, and the pass moves on
    to the next older migration.

    Args:
        conn: psycopg Connection in autocommit mode
        migrations: Migrations known for this ledger
        ledger: Ledger holding the applied versions
        report: Report to append to (a new one is created if omitted)

    Returns:
        TeardownReport
    """
    report = report or TeardownReport()
    applied = ledger.applied_versions()

    for migration in sorted(migrations, key=lambda m: m.version, reverse=True):
        if migration.version not in applied:
            continue

        if migration.down_path is None:
            report.missing_down_scripts.append(migration.filename)
            logger.warning(
                f"No rollback script available for migration {migration.label}"
            )
            continue

        logger.info(f"Rolling back migration {migration.label}")
        try:
            content = migration.read_down_content() or ""
        except (OSError, UnicodeDecodeError) as e:
            report.failed_down_scripts.append(migration.filename)
            logger.error(f"Could not read rollback script of migration {migration.label}: {e}")
            continue

        try:
            with conn.transaction():
                for statement in split_statements(content):
                    tolerated = execute_tolerant(conn, statement)
                    if tolerated is not None:
                        report.tolerated.append(f"{migration.filename}: {tolerated}")
        except FatalStatementError as e:
            report.failed_down_scripts.append(migration.filename)
            logger.error(f"Rollback of migration {migration.label} failed: {e}")
            continue

        report.rolled_back.append(migration.version)

    return report


def teardown_schema(
    conn,
    plan: TeardownPlan,
    schema: str = DEFAULT_SCHEMA,
    report: TeardownReport | None = None,
) -> TeardownReport:
    """
    Drop every object in the plan inside one transaction.

    Args:
        conn: psycopg Connection in autocommit mode
        plan: Validated drop plan
        schema: Schema the objects live in
        report: Report to append to (a new one is created if omitted)

    Returns:
        TeardownReport

    Raises:
        FatalStatementError: A drop failed for a reason other than the
            object already being gone; nothing in the plan was dropped
    """
    report = report or TeardownReport()
    schema = validate_identifier(schema, "schema")

    steps = [
        ("TABLE", name) for name in plan.tables
    ] + [
        ("MATERIALIZED VIEW", name) for name in plan.materialized_views
    ] + [
        ("TABLE", name) for name in plan.supplementary_tables
    ]

    with conn.transaction():
        for kind, name in steps:
            statement = sql.SQL("DROP {} IF EXISTS {} CASCADE").format(
                sql.SQL(kind), sql.Identifier(schema, name)
            )
            tolerated = execute_tolerant(
                conn, statement, label=f"DROP {kind} IF EXISTS {name} CASCADE"
            )
            if tolerated is not None:
                report.tolerated.append(f"{name}: {tolerated}")
            report.dropped.append(name)
            logger.debug(f"Dropped {kind.lower()} {name}")

    logger.info(f"Teardown dropped {len(steps)} objects")
    return report


def find_remaining_tables(conn, schema: str = DEFAULT_SCHEMA) -> list[str]:
    """
    Return every base table still present in schema, sorted.

    The whole schema is listed, not just the tables the drop plan knows
    about, so tables created by migrations without a down script show up.
    """
    schema = validate_identifier(schema, "schema")
    rows = conn.execute(
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = %s AND table_type = 'BASE TABLE' "
        "ORDER BY table_name",
        (schema,),
    ).fetchall()
    return sorted(row[0] for row in rows)
