"""
Schema snapshot and validation against a declared expectation.

After migrations commit, the validator reads the live catalog and compares
it with a SchemaExpectation:

1. Base tables in the schema; expected tables that are absent are reported.
2. Columns of each table in ``required_columns``. A missing column is a hard
   failure and raises SchemaValidationError carrying the report.
3. Extensions, enumerated types and functions. Absent ones are reported as
   warnings only.
4. Indexes whose names start with one of the expected prefixes are counted.

The snapshot is read fresh on every call and never cached.
"""

import logging
from dataclasses import dataclass, field

from schema_migrator.config.constants import DEFAULT_SCHEMA
from schema_migrator.config.schema import SchemaExpectation
from schema_migrator.config.validators import validate_identifier
from schema_migrator.exceptions import SchemaValidationError

logger = logging.getLogger(__name__)

_TABLES_QUERY = (
    "SELECT table_name FROM information_schema.tables "
    "WHERE table_schema = %s AND table_type = 'BASE TABLE' "
    "ORDER BY table_name"
)
_COLUMNS_QUERY = (
    "SELECT column_name FROM information_schema.columns "
    "WHERE table_schema = %s AND table_name = %s "
    "ORDER BY ordinal_position"
)
_EXTENSIONS_QUERY = "SELECT extname FROM pg_extension WHERE extname = ANY(%s)"
_ENUMS_QUERY = "SELECT typname FROM pg_type WHERE typtype = 'e' AND typname = ANY(%s)"
_FUNCTIONS_QUERY = "SELECT DISTINCT proname FROM pg_proc WHERE proname = ANY(%s)"
_INDEXES_QUERY = "SELECT indexname FROM pg_indexes WHERE schemaname = %s"


@dataclass
class SchemaSnapshot:
    """Catalog state read from the database at one point in time."""

    tables: set[str] = field(default_factory=set)
    columns: dict[str, list[str]] = field(default_factory=dict)
    extensions: set[str] = field(default_factory=set)
    enums: set[str] = field(default_factory=set)
    functions: set[str] = field(default_factory=set)
    indexes: list[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    """
    Result of comparing a snapshot with an expectation.

    Attributes:
        missing_tables: Expected tables not present, sorted
        missing_columns: Checked table -> required columns it lacks
        present_*/missing_*: Expected enums, functions and extensions split
            by presence, sorted
        index_count: Indexes matching the expected name prefixes
        found_tables: Every base table found in the schema, sorted
    """

    missing_tables: list[str] = field(default_factory=list)
    missing_columns: dict[str, list[str]] = field(default_factory=dict)
    present_enums: list[str] = field(default_factory=list)
    missing_enums: list[str] = field(default_factory=list)
    present_functions: list[str] = field(default_factory=list)
    missing_functions: list[str] = field(default_factory=list)
    present_extensions: list[str] = field(default_factory=list)
    missing_extensions: list[str] = field(default_factory=list)
    index_count: int = 0
    found_tables: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.missing_tables and not self.missing_columns

    @property
    def warnings(self) -> list[str]:
        """Human-readable lines for the non-fatal findings."""
        lines = []
        if self.missing_extensions:
            lines.append(f"Missing extensions: {', '.join(self.missing_extensions)}")
        if self.missing_enums:
            lines.append(f"Missing enums: {', '.join(self.missing_enums)}")
        if self.missing_functions:
            lines.append(f"Missing functions: {', '.join(self.missing_functions)}")
        return lines

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "missing_tables": self.missing_tables,
            "missing_columns": self.missing_columns,
            "present_enums": self.present_enums,
            "missing_enums": self.missing_enums,
            "present_functions": self.present_functions,
            "missing_functions": self.missing_functions,
            "present_extensions": self.present_extensions,
            "missing_extensions": self.missing_extensions,
            "index_count": self.index_count,
            "found_tables": self.found_tables,
        }


class SchemaValidator:
    """
    Reads the catalog of one schema and checks it against an expectation.

    Args:
        conn: psycopg Connection to the migrated database
        schema: Schema to inspect (default "public")
    """

    def __init__(self, conn, schema: str = DEFAULT_SCHEMA):
        self.conn = conn
        self.schema = validate_identifier(schema, "schema")

    def _names(self, query: str, params: tuple) -> list[str]:
        return [row[0] for row in self.conn.execute(query, params).fetchall()]

    def snapshot(self, expectation: SchemaExpectation) -> SchemaSnapshot:
        """Read the parts of the catalog the expectation refers to."""
        snapshot = SchemaSnapshot()
        snapshot.tables = set(self._names(_TABLES_QUERY, (self.schema,)))

        for table in sorted(expectation.required_columns):
            snapshot.columns[table] = self._names(_COLUMNS_QUERY, (self.schema, table))

        if expectation.extensions:
            snapshot.extensions = set(
                self._names(_EXTENSIONS_QUERY, (sorted(expectation.extensions),))
            )
        if expectation.enums:
            snapshot.enums = set(self._names(_ENUMS_QUERY, (sorted(expectation.enums),)))
        if expectation.functions:
            snapshot.functions = set(
                self._names(_FUNCTIONS_QUERY, (sorted(expectation.functions),))
            )
        snapshot.indexes = self._names(_INDEXES_QUERY, (self.schema,))
        return snapshot

    def validate(self, expectation: SchemaExpectation) -> ValidationReport:
        """
        Validate the live schema against an expectation.

        Args:
            expectation: Declared model of the migrated schema

        Returns:
            ValidationReport. Missing tables leave passed False without
            raising.

        Raises:
            SchemaValidationError: A checked table lacks required columns
                (the partially built report is attached)
        """
        snapshot = self.snapshot(expectation)
        report = ValidationReport(found_tables=sorted(snapshot.tables))

        report.missing_tables = sorted(expectation.tables - snapshot.tables)
        if report.missing_tables:
            logger.warning(f"Missing tables: {', '.join(report.missing_tables)}")
        logger.info(f"Found {len(snapshot.tables)} tables in schema {self.schema}")

        report.present_extensions = sorted(expectation.extensions & snapshot.extensions)
        report.missing_extensions = sorted(expectation.extensions - snapshot.extensions)
        report.present_enums = sorted(expectation.enums & snapshot.enums)
        report.missing_enums = sorted(expectation.enums - snapshot.enums)
        report.present_functions = sorted(expectation.functions & snapshot.functions)
        report.missing_functions = sorted(expectation.functions - snapshot.functions)
        report.index_count = sum(
            1
            for name in snapshot.indexes
            if any(name.startswith(prefix) for prefix in expectation.index_prefixes)
        )
        for line in report.warnings:
            logger.warning(line)

        for table in sorted(expectation.required_columns):
            existing = set(snapshot.columns.get(table, []))
            missing = sorted(expectation.required_columns[table] - existing)
            if missing:
                report.missing_columns[table] = missing
            else:
                logger.debug(f"Table '{table}' has all required columns")

        if report.missing_columns:
            details = "; ".join(
                f"{table} is missing columns: {', '.join(columns)}"
                for table, columns in report.missing_columns.items()
            )
            logger.error(f"Schema validation failed: {details}")
            raise SchemaValidationError(
                f"Schema validation failed: {details}", report=report
            )

        logger.info(
            f"Schema validation {'passed' if report.passed else 'failed'}: "
            f"{report.index_count} matching indexes, {len(report.warnings)} warnings"
        )
        return report
