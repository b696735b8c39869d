"""
Classification of statement errors by SQLSTATE.

Historical databases are often partially migrated already, so a migration
that re-creates an object that exists, or drops one that is gone, should
not abort the run. Which errors are tolerable is decided from the
five-character SQLSTATE the server reports (exposed by psycopg as
``exc.sqlstate``), never from the human-readable message, which changes
with server version and lc_messages.
"""

from enum import Enum

import psycopg

from schema_migrator.exceptions import (
    FatalStatementError,
    StatementError,
    TolerableStatementError,
)


class TolerableCondition(str, Enum):
    """SQLSTATE codes for "object already exists" / "object does not exist"."""

    DUPLICATE_TABLE = "42P07"
    DUPLICATE_OBJECT = "42710"
    DUPLICATE_COLUMN = "42701"
    DUPLICATE_SCHEMA = "42P06"
    DUPLICATE_FUNCTION = "42723"
    DUPLICATE_ALIAS = "42712"
    UNDEFINED_TABLE = "42P01"
    UNDEFINED_COLUMN = "42703"
    UNDEFINED_OBJECT = "42704"
    UNDEFINED_FUNCTION = "42883"
    INVALID_SCHEMA_NAME = "3F000"


class StatementErrorKind(str, Enum):
    """Outcome of classifying a failed statement."""

    TOLERABLE = "tolerable"
    FATAL = "fatal"


_TOLERABLE_CODES = {condition.value for condition in TolerableCondition}


def error_sqlstate(exc: BaseException) -> str | None:
    """Return the SQLSTATE carried by a driver exception, if any."""
    sqlstate = getattr(exc, "sqlstate", None)
    return sqlstate if isinstance(sqlstate, str) else None


def tolerable_condition(exc: BaseException) -> TolerableCondition | None:
    """
    Return the tolerable condition an exception represents, if any.

    Example:
        >>> import psycopg.errors
        >>> tolerable_condition(psycopg.errors.DuplicateTable("exists"))
        <TolerableCondition.DUPLICATE_TABLE: '42P07'>
    """
    sqlstate = error_sqlstate(exc)
    if sqlstate in _TOLERABLE_CODES:
        return TolerableCondition(sqlstate)
    return None


def classify_error(exc: BaseException) -> StatementErrorKind:
    """
    Classify a statement error as tolerable or fatal.

    Anything without a recognised SQLSTATE (connection loss, syntax errors,
    constraint violations, non-driver exceptions) is fatal.
    """
    if tolerable_condition(exc) is not None:
        return StatementErrorKind.TOLERABLE
    return StatementErrorKind.FATAL


def wrap_statement_error(exc: BaseException, statement: str) -> StatementError:
    """
    Wrap a driver exception in the matching StatementError subclass.

    Args:
        exc: Exception raised while executing statement
        statement: The SQL text that failed

    Returns:
        TolerableStatementError or FatalStatementError with the first line of
        the server message and the SQLSTATE attached
    """
    message = str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
    sqlstate = error_sqlstate(exc)

    if classify_error(exc) is StatementErrorKind.TOLERABLE:
        return TolerableStatementError(message, statement=statement, sqlstate=sqlstate)
    return FatalStatementError(message, statement=statement, sqlstate=sqlstate)


def execute_tolerant(
    conn, statement, label: str | None = None
) -> TolerableStatementError | None:
    """
    Execute one statement inside a savepoint, tolerating benign errors.

    The savepoint is rolled back on any failure, so the enclosing
    transaction stays usable after a tolerated error.

    Args:
        conn: psycopg Connection with a transaction already open (or in
            autocommit mode, where the savepoint becomes a transaction)
        statement: SQL text or a psycopg.sql Composable
        label: Text recorded on the error in place of a composed statement

    Returns:
        The TolerableStatementError that was swallowed, or None on success

    Raises:
        FatalStatementError: For any other driver error, chained to it
    """
    try:
        with conn.transaction():
            conn.execute(statement)
    except psycopg.Error as e:
        text = label or (statement if isinstance(statement, str) else str(statement))
        error = wrap_statement_error(e, text)
        if isinstance(error, TolerableStatementError):
            return error
        raise error from e
    return None
