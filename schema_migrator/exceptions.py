"""
Custom exceptions for schema-migrator.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the engine. All exceptions inherit from the base
SchemaMigratorError for consistent catching.

Exception Hierarchy:
    SchemaMigratorError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── IdentifierError
    ├── DiscoveryError
    ├── DatabaseConnectionError
    ├── StatementError
    │   ├── TolerableStatementError
    │   └── FatalStatementError
    │       └── MigrationFailed
    ├── SchemaValidationError
    └── CleanupError

Propagation policy:
    - DiscoveryError and FatalStatementError stop a run immediately and map
      to a non-zero CLI exit code.
    - TolerableStatementError and CleanupError are caught, logged, and
      execution continues.
    - Nothing is retried automatically.

Usage:
    from schema_migrator.exceptions import MigrationFailed

    try:
        executor.run(migrations)
    except MigrationFailed as e:
        logger.error(f"Migration {e.version} failed: {e.cause}")
        sys.exit(3)
"""

from typing import Any


class SchemaMigratorError(Exception):
    """
    Base exception for all schema-migrator errors.

    All custom exceptions in this package inherit from this class.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(SchemaMigratorError):
    """
    Base class for configuration-related errors.

    Raised when environment settings or YAML model files fail to load or
    validate. Should result in exit code 1.
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("Expectation file not found: schema.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration is invalid (schema validation failed).

    Example:
        raise ConfigValidationError("DB_PORT: Input should be a valid integer")
    """

    pass


class IdentifierError(ConfigurationError):
    """
    An SQL identifier was rejected by the identifier allow-list.

    Raised before any DDL is rendered, so a bad name never reaches the
    database.

    Example:
        raise IdentifierError("Invalid table identifier: 'users; DROP'")
    """

    pass


# ============================================================================
# Discovery Errors
# ============================================================================


class DiscoveryError(SchemaMigratorError):
    """
    Migration files could not be discovered.

    Raised for a missing directory, a filename without a leading version
    number, or two files parsing to the same version. Always raised before
    any database work begins.

    Example:
        raise DiscoveryError("Duplicate migration version 7: 007_a.sql, 007_b.sql")
    """

    pass


class DatabaseConnectionError(SchemaMigratorError):
    """
    Could not connect to the target PostgreSQL server.

    Should result in exit code 2.
    """

    pass


# ============================================================================
# Statement Errors
# ============================================================================


class StatementError(SchemaMigratorError):
    """
    Base class for errors raised while executing a single SQL statement.

    Attributes:
        statement: The SQL text that failed
        sqlstate: Five-character SQLSTATE reported by the server, if any
    """

    def __init__(
        self,
        message: str,
        statement: str | None = None,
        sqlstate: str | None = None,
    ):
        super().__init__(message)
        self.statement = statement
        self.sqlstate = sqlstate


class TolerableStatementError(StatementError):
    """
    Statement failed because the target object already exists or does not exist.

    Logged as a warning; execution of the migration continues.
    """

    pass


class FatalStatementError(StatementError):
    """
    Statement failed with any non-tolerable error.

    Aborts the current transaction and the whole run.
    """

    pass


class MigrationFailed(FatalStatementError):
    """
    A migration could not be applied.

    The migration's transaction has been rolled back and no ledger entry was
    written. Not retried: the script must be fixed and the run repeated.

    Attributes:
        version: Migration version number
        filename: Migration filename
        cause: Underlying exception

    Example:
        raise MigrationFailed(7, "007_add_index.sql", cause=exc)
    """

    def __init__(
        self,
        version: int,
        filename: str,
        cause: BaseException | None = None,
        statement: str | None = None,
        sqlstate: str | None = None,
    ):
        message = f"Migration {version:03d} ({filename}) failed"
        if cause is not None:
            first_line = str(cause).strip().splitlines()[0] if str(cause).strip() else ""
            message = f"{message}: {first_line or type(cause).__name__}"
        super().__init__(message, statement=statement, sqlstate=sqlstate)
        self.version = version
        self.filename = filename
        self.cause = cause


# ============================================================================
# Validation / Cleanup Errors
# ============================================================================


class SchemaValidationError(SchemaMigratorError):
    """
    The migrated schema does not match the declared model.

    Raised after migrations have committed when a checked table is missing
    required columns.

    Attributes:
        report: The ValidationReport built up to the point of failure
    """

    def __init__(self, message: str, report: Any = None):
        super().__init__(message)
        self.report = report


class CleanupError(SchemaMigratorError):
    """
    Dropping the ephemeral test database failed.

    Always logged and never escalated, so it cannot mask the primary result.
    """

    pass
