"""
Structured JSON logging for schema-migrator.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields
- Credential redaction (never log database passwords)
- Component-based logger creation

All logs use Python's standard logging module with custom formatting.
Log level defaults to INFO, use setup_logging(verbose=True) for DEBUG.

Examples:
    >>> from schema_migrator.utils.logging import setup_logging, get_logger
    >>> setup_logging(verbose=True)
    >>> logger = get_logger("migrations.executor")
    >>> logger.info("Applied migration", extra={"context": {"version": 7}})

Security:
    - NEVER log database passwords or DSNs with credentials
    - Only stderr is used (stdout reserved for user output)
"""

import json
import logging
import re
import sys
from typing import Any

from schema_migrator.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs as JSON with structured fields.

    Each log record is formatted as a JSON object with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level (INFO, WARNING, ERROR, DEBUG)
    - component: Module/component name (from logger name)
    - message: Human-readable log message
    - context: Additional structured data (from 'context' in extra)
    - migration_version: Migration being processed (from 'migration_version' in extra)
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON string.

        Args:
            record: LogRecord instance from Python logging

        Returns:
            JSON string representing the log entry
        """
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "migration_version"):
            log_entry["migration_version"] = record.migration_version

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts database credentials from log messages.

    Prevents accidental logging of:
    - password=... fragments of libpq connection strings
    - user:password@ segments of postgres:// URLs
    - PGPASSWORD=... environment assignments

    "password=hunter2 host=db" -> "password=*** host=db"
    "postgresql://app:hunter2@db/app" -> "postgresql://app:***@db/app"
    """

    SECRET_PATTERNS = [
        (re.compile(r"(?i)\b(password\s*=\s*)('[^']*'|\S+)"), r"\1***"),
        (re.compile(r"(?i)\b(PGPASSWORD\s*=\s*)\S+"), r"\1***"),
        (re.compile(r"(postgres(?:ql)?://[^:/@\s]+:)[^@\s]+(@)"), r"\1***\2"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Redact credentials from log record message, args and context.

        Args:
            record: LogRecord to filter

        Returns:
            True (always allow record, but with redacted content)
        """
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, replacement in self.SECRET_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Recursively redact credentials in dictionary values.

        Keys named like a password are masked outright.
        """
        result = {}
        for key, value in data.items():
            if "password" in key.lower():
                result[key] = "***"
            elif isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Sets up:
    - JSON formatter for structured output
    - Credential redaction filter
    - stderr output (stdout reserved for user-facing content)
    - Log level: DEBUG if verbose=True, INFO otherwise

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
        quiet_logs: If True (and not verbose), only WARNING and above are
            emitted. Used in human output mode where Rich carries progress.
    """
    root_logger = logging.getLogger()

    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger.setLevel(level)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)


def get_logger(component: str) -> logging.Logger:
    """
    Get a logger instance for a specific component.

    Args:
        component: Component name (e.g., "migrations.executor")

    Returns:
        Logger instance configured for JSON output
    """
    return logging.getLogger(component)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    migration_version: int | None = None,
) -> None:
    """
    Log a message with structured context and optional migration version.

    Equivalent to logger.log(level, message, extra={'context': {...},
    'migration_version': ...}).

    Args:
        logger: Logger instance (from get_logger)
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        migration_version: Optional migration version to include in log

    Example:
        >>> logger = get_logger("migrations.executor")
        >>> log_with_context(
        ...     logger,
        ...     logging.WARNING,
        ...     "Tolerated statement error",
        ...     context={"sqlstate": "42P07"},
        ...     migration_version=3,
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if migration_version is not None:
        extra["migration_version"] = migration_version

    logger.log(level, message, extra=extra if extra else None)
