"""
UTC timestamp utilities for schema-migrator.

All timestamps MUST be in UTC with explicit timezone markers. Ledger rows are
written with the database clock (``NOW()``), but everything the tool logs or
prints goes through these helpers.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- format_timestamp(): Render a datetime (e.g. a ledger executed_at) as ISO 8601 'Z'

Examples:
    >>> from schema_migrator.utils.time import utc_now, utc_timestamp
    >>> now = utc_now()
    >>> now.tzinfo
    datetime.timezone.utc
    >>> utc_timestamp()
    '2025-11-02T08:30:45Z'
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Returns:
        datetime: Current UTC time with tzinfo=timezone.utc

    Note:
        NEVER use datetime.now() without timezone parameter.
        NEVER use datetime.utcnow() (deprecated, returns naive datetime).
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ (with colons in time)

    Returns:
        str: ISO 8601 formatted timestamp in UTC
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def format_timestamp(dt: datetime | None) -> str:
    """
    Render a datetime as an ISO 8601 UTC string with 'Z' suffix.

    Aware datetimes are converted to UTC first. Naive datetimes (a ledger
    created with ``TIMESTAMP`` rather than ``TIMESTAMPTZ``) are assumed to
    already be UTC.

    Args:
        dt: Datetime to render, or None

    Returns:
        str: Formatted timestamp, or "-" when dt is None

    Examples:
        >>> from datetime import datetime, timezone
        >>> format_timestamp(datetime(2025, 11, 2, 8, 30, 45, tzinfo=timezone.utc))
        '2025-11-02T08:30:45Z'
        >>> format_timestamp(None)
        '-'
    """
    if dt is None:
        return "-"

    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)

    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")
