"""
Base schema bootstrap from declarative definitions.

A fresh database gets its extensions, enumerated types and base tables from
baseline.yaml before any migration set runs. DDL is composed from fixed
templates with psycopg.sql:

- identifiers (extension, enum, table and column names) pass the allow-list
  in config.validators and are quoted with sql.Identifier
- enum labels are bound as sql.Literal
- column types and constraint fragments are taken verbatim, and only ever
  come from the packaged data file (their content is checked by the
  pydantic models in config.schema)

Every statement is idempotent or tolerant: extensions and tables use
IF NOT EXISTS, and an enum that already exists is a tolerated error.
"""

import logging
from dataclasses import dataclass, field

from psycopg import sql

from schema_migrator.config.schema import BaselineSchema, EnumDefinition, TableDefinition
from schema_migrator.migrations.errors import execute_tolerant

logger = logging.getLogger(__name__)


@dataclass
class BaselineStatement:
    """One rendered DDL statement and a readable label for logs."""

    label: str
    statement: sql.Composable


@dataclass
class BaselineResult:
    """Outcome of apply_baseline()."""

    version: int
    executed: int = 0
    tolerated: list[str] = field(default_factory=list)


def render_extension(name: str) -> BaselineStatement:
    return BaselineStatement(
        label=f"extension {name}",
        statement=sql.SQL("CREATE EXTENSION IF NOT EXISTS {}").format(
            sql.Identifier(name)
        ),
    )


def render_enum(enum: EnumDefinition) -> BaselineStatement:
    return BaselineStatement(
        label=f"enum {enum.name}",
        statement=sql.SQL("CREATE TYPE {} AS ENUM ({})").format(
            sql.Identifier(enum.name),
            sql.SQL(", ").join(sql.Literal(value) for value in enum.values),
        ),
    )


def render_table(table: TableDefinition) -> BaselineStatement:
    parts = []
    for column in table.columns:
        definition = f"{column.type} {column.constraints}".strip()
        parts.append(
            sql.SQL("{} {}").format(sql.Identifier(column.name), sql.SQL(definition))
        )
    parts.extend(sql.SQL(fragment) for fragment in table.constraints)

    return BaselineStatement(
        label=f"table {table.name}",
        statement=sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
            sql.Identifier(table.name), sql.SQL(", ").join(parts)
        ),
    )


def render_baseline(baseline: BaselineSchema) -> list[BaselineStatement]:
    """
    Render the baseline as DDL statements in creation order.

    Order is extensions, then enums, then tables in declaration order.

    Args:
        baseline: Validated baseline definitions

    Returns:
        List of BaselineStatement
    """
    statements = [render_extension(name) for name in baseline.extensions]
    statements.extend(render_enum(enum) for enum in baseline.enums)
    statements.extend(render_table(table) for table in baseline.tables)
    return statements


def apply_baseline(conn, baseline: BaselineSchema) -> BaselineResult:
    """
    Create the base schema inside a single transaction.

    Each statement runs in its own savepoint. Already-exists errors are
    tolerated; any other error rolls back the whole bootstrap.

    Args:
        conn: psycopg Connection in autocommit mode
        baseline: Validated baseline definitions

    Returns:
        BaselineResult with executed and tolerated counts

    Raises:
        FatalStatementError: A statement failed with a non-tolerable error
    """
    result = BaselineResult(version=baseline.version)
    statements = render_baseline(baseline)

    logger.info(
        f"Bootstrapping baseline schema v{baseline.version} "
        f"({len(statements)} statements)"
    )

    with conn.transaction():
        for item in statements:
            tolerated = execute_tolerant(conn, item.statement, label=item.label)
            result.executed += 1
            if tolerated is not None:
                result.tolerated.append(f"{item.label}: {tolerated}")
                logger.warning(f"  Tolerated error creating {item.label}: {tolerated}")
            else:
                logger.debug(f"  Created {item.label}")

    logger.info(
        f"Baseline schema ready: {result.executed} statements, "
        f"{len(result.tolerated)} tolerated"
    )
    return result
