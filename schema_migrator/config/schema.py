"""
Configuration schema models for schema-migrator.

This module defines Pydantic models for the three inputs the engine is
configured with: connection settings (from environment variables), the
schema expectation (YAML), and the declarative baseline schema (YAML).

Models:
    DatabaseSettings: PostgreSQL connection parameters
    SchemaExpectation: What the database should contain after migrations run
    ColumnDefinition: One column of a baseline table
    EnumDefinition: A baseline enumerated type and its labels
    TableDefinition: A baseline table with ordered columns
    TeardownPlan: Dependency-ordered drop list for the coarse DOWN pass
    BaselineSchema: Root model of baseline.yaml
"""

from pydantic import BaseModel, Field, field_validator, model_validator

from schema_migrator.config.constants import EPHEMERAL_DB_SUFFIX
from schema_migrator.config.validators import (
    validate_extension_name,
    validate_identifier,
)
from schema_migrator.exceptions import IdentifierError


def _identifier(value: str, kind: str) -> str:
    # Pydantic only aggregates ValueError, so re-raise as one
    try:
        return validate_identifier(value, kind)
    except IdentifierError as e:
        raise ValueError(str(e)) from e


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection parameters.

    Built from DB_HOST, DB_PORT, DB_NAME, DB_USERNAME, DB_PASSWORD and DB_SSL
    by config.loader.load_database_settings().

    Attributes:
        host: Server hostname
        port: Server port (1-65535)
        name: Target database name
        user: Login role
        password: Login password (never logged)
        ssl: Require TLS when True, disable it otherwise
    """

    host: str
    port: int = 5432
    name: str
    user: str
    password: str = Field(default="", repr=False)
    ssl: bool = False

    @field_validator("host", "name", "user")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate connection fields are non-empty."""
        if not v or v.isspace():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in the TCP range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got: {v}")
        return v

    @property
    def ephemeral_name(self) -> str:
        """Name of the throwaway database used by the test harness."""
        return validate_identifier(
            f"{self.name}{EPHEMERAL_DB_SUFFIX}", "ephemeral database"
        )

    def conninfo_kwargs(self, dbname: str | None = None) -> dict:
        """
        Keyword arguments for psycopg.connect().

        Args:
            dbname: Database to connect to instead of self.name

        Returns:
            dict of libpq connection parameters
        """
        return {
            "host": self.host,
            "port": self.port,
            "dbname": dbname or self.name,
            "user": self.user,
            "password": self.password,
            "sslmode": "require" if self.ssl else "disable",
        }


class SchemaExpectation(BaseModel):
    """
    Declarative model of what the database should contain.

    Supplied by the caller (expectation.yaml); read-only during validation.

    Attributes:
        tables: Base tables that must exist
        required_columns: Curated subset of structurally significant tables
            mapped to the columns they must have. A missing column is a hard
            validation failure.
        enums: Enumerated types expected to exist (absence is a warning)
        functions: Functions expected to exist (absence is a warning)
        extensions: Extensions expected to be installed (absence is a warning)
        index_prefixes: Index naming-convention prefixes to count
    """

    tables: set[str] = Field(default_factory=set)
    required_columns: dict[str, set[str]] = Field(default_factory=dict)
    enums: set[str] = Field(default_factory=set)
    functions: set[str] = Field(default_factory=set)
    extensions: set[str] = Field(default_factory=set)
    index_prefixes: set[str] = Field(default_factory=lambda: {"idx_"})

    @field_validator("tables", "enums", "functions", "index_prefixes")
    @classmethod
    def validate_names(cls, v: set[str]) -> set[str]:
        """Validate no name is empty."""
        for name in v:
            if not name or name.isspace():
                raise ValueError("names cannot be empty")
        return v

    @field_validator("required_columns")
    @classmethod
    def validate_required_columns(cls, v: dict[str, set[str]]) -> dict[str, set[str]]:
        """Validate every checked table lists at least one column."""
        for table, columns in v.items():
            if not columns:
                raise ValueError(f"required_columns.{table} cannot be empty")
        return v


class ColumnDefinition(BaseModel):
    """
    One column of a baseline table.

    Attributes:
        name: Column identifier (allow-listed)
        type: SQL type fragment, e.g. "uuid" or "vector(1536)"
        constraints: Optional constraint fragment, e.g. "NOT NULL DEFAULT NOW()"
    """

    name: str
    type: str
    constraints: str = ""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate column name against the identifier allow-list."""
        return _identifier(v, "column")

    @field_validator("type", "constraints")
    @classmethod
    def validate_fragment(cls, v: str) -> str:
        """Reject statement terminators and comments in DDL fragments."""
        if ";" in v or "--" in v or "/*" in v:
            raise ValueError(f"DDL fragment may not contain ';' or comments: {v!r}")
        return v.strip()

    @field_validator("type")
    @classmethod
    def validate_type_not_empty(cls, v: str) -> str:
        """Validate type is non-empty."""
        if not v:
            raise ValueError("column type cannot be empty")
        return v


class EnumDefinition(BaseModel):
    """A baseline enumerated type and its ordered labels."""

    name: str
    values: list[str]

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate enum name against the identifier allow-list."""
        return _identifier(v, "enum")

    @field_validator("values")
    @classmethod
    def validate_values(cls, v: list[str]) -> list[str]:
        """Validate the label list is non-empty and unique."""
        if not v:
            raise ValueError("enum must declare at least one value")
        if len(set(v)) != len(v):
            raise ValueError("enum values must be unique")
        return v


class TableDefinition(BaseModel):
    """
    A baseline table.

    Tables are created in the order they are declared, so referenced tables
    must come first.

    Attributes:
        name: Table identifier (allow-listed)
        columns: Ordered column definitions
        constraints: Table-level constraint fragments, e.g. "UNIQUE(a, b)"
    """

    name: str
    columns: list[ColumnDefinition]
    constraints: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate table name against the identifier allow-list."""
        return _identifier(v, "table")

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: list[ColumnDefinition]) -> list[ColumnDefinition]:
        """Validate columns are non-empty and uniquely named."""
        if not v:
            raise ValueError("table must declare at least one column")
        names = [column.name for column in v]
        if len(set(names)) != len(names):
            raise ValueError("column names must be unique")
        return v

    @field_validator("constraints")
    @classmethod
    def validate_constraints(cls, v: list[str]) -> list[str]:
        """Reject statement terminators and comments in constraint fragments."""
        for fragment in v:
            if ";" in fragment or "--" in fragment or "/*" in fragment:
                raise ValueError(
                    f"DDL fragment may not contain ';' or comments: {fragment!r}"
                )
        return v


class TeardownPlan(BaseModel):
    """
    Dependency-ordered drop list for the coarse DOWN pass.

    Attributes:
        tables: Tables in reverse dependency order
        materialized_views: Derived views dropped after the tables
        supplementary_tables: Tables created by incremental migrations
    """

    tables: list[str] = Field(default_factory=list)
    materialized_views: list[str] = Field(default_factory=list)
    supplementary_tables: list[str] = Field(default_factory=list)

    @field_validator("tables", "materialized_views", "supplementary_tables")
    @classmethod
    def validate_targets(cls, v: list[str]) -> list[str]:
        """Validate every drop target against the identifier allow-list."""
        return [_identifier(name, "teardown") for name in v]


class BaselineSchema(BaseModel):
    """
    Root model of baseline.yaml.

    The base schema is synthesized from these declarative definitions rather
    than from migration files, so a fresh database can be bootstrapped
    without an external schema-generation tool.

    Attributes:
        version: Template version, bumped whenever the definitions change
        extensions: Extensions created first
        enums: Enumerated types created second
        tables: Tables created last, in declaration order
        teardown: Drop plan used by the test harness DOWN pass
    """

    version: int = 1
    extensions: list[str] = Field(default_factory=list)
    enums: list[EnumDefinition] = Field(default_factory=list)
    tables: list[TableDefinition] = Field(default_factory=list)
    teardown: TeardownPlan = Field(default_factory=TeardownPlan)

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: list[str]) -> list[str]:
        """Validate extension names against the allow-list."""
        try:
            return [validate_extension_name(name) for name in v]
        except IdentifierError as e:
            raise ValueError(str(e)) from e

    @model_validator(mode="after")
    def validate_unique_tables(self) -> "BaselineSchema":
        """Validate table and enum names are unique."""
        tables = [table.name for table in self.tables]
        if len(set(tables)) != len(tables):
            raise ValueError("baseline table names must be unique")
        enums = [enum.name for enum in self.enums]
        if len(set(enums)) != len(enums):
            raise ValueError("baseline enum names must be unique")
        return self
