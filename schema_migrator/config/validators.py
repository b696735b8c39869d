"""
Identifier allow-list validation.

Every SQL identifier that ends up inside rendered DDL (ledger table names,
ephemeral database names, baseline tables, enum types, teardown targets)
passes through validate_identifier() first. Names are then quoted with
psycopg.sql.Identifier when composed, so the allow-list is the first line
and quoting the second.

Values are never interpolated into SQL text directly.
"""

import re

from schema_migrator.config.constants import MAX_IDENTIFIER_LENGTH
from schema_migrator.exceptions import IdentifierError

IDENTIFIER_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")

# Extension names such as "uuid-ossp" also contain hyphens
EXTENSION_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """
    Check that name is a plain lower-case SQL identifier.

    Args:
        name: Candidate identifier
        kind: What the identifier names (used in the error message)

    Returns:
        The identifier, unchanged

    Raises:
        IdentifierError: If name is empty, too long, or contains anything
            outside [a-z0-9_] (or starts with a digit)

    Examples:
        >>> validate_identifier("merchant_settings", "table")
        'merchant_settings'
        >>> validate_identifier("users; DROP TABLE x", "table")
        Traceback (most recent call last):
        ...
        schema_migrator.exceptions.IdentifierError: Invalid table identifier: 'users; DROP TABLE x'
    """
    return _validate(name, kind, IDENTIFIER_PATTERN)


def validate_extension_name(name: str) -> str:
    """Like validate_identifier(), but allows hyphens ("uuid-ossp")."""
    return _validate(name, "extension", EXTENSION_PATTERN)


def _validate(name: str, kind: str, pattern: re.Pattern) -> str:
    if not isinstance(name, str) or not pattern.match(name):
        raise IdentifierError(f"Invalid {kind} identifier: {name!r}")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise IdentifierError(
            f"Invalid {kind} identifier: {name!r} is longer than "
            f"{MAX_IDENTIFIER_LENGTH} characters"
        )
    return name
