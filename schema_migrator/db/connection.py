"""
PostgreSQL connection management.

Connections are opened in autocommit mode. Callers open transactions
explicitly with ``conn.transaction()``; nested blocks become savepoints.
Administrative statements (CREATE/DROP DATABASE) cannot run inside a
transaction block at all, so they always go through a separate autocommit
connection to the ``postgres`` maintenance database.

Security:
    - Database names are checked against the identifier allow-list and
      quoted with sql.Identifier, never interpolated
    - Passwords are passed to libpq as keyword arguments and never logged
"""

import logging

import psycopg
from psycopg import sql

from schema_migrator.config.schema import DatabaseSettings
from schema_migrator.config.validators import validate_identifier
from schema_migrator.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


def connect(
    settings: DatabaseSettings, dbname: str | None = None, autocommit: bool = True
) -> psycopg.Connection:
    """
    Open a connection to the configured server.

    Args:
        settings: Connection parameters
        dbname: Database to connect to instead of settings.name
        autocommit: Autocommit mode (True for everything in this package)

    Returns:
        Open psycopg Connection. Use it as a context manager to close it.

    Raises:
        DatabaseConnectionError: If the server cannot be reached or rejects
            the login
    """
    target = dbname or settings.name
    try:
        conn = psycopg.connect(**settings.conninfo_kwargs(target), autocommit=autocommit)
    except psycopg.OperationalError as e:
        raise DatabaseConnectionError(
            f"Could not connect to {settings.host}:{settings.port}/{target}: "
            f"{str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__}"
        ) from e

    logger.debug(f"Connected to {settings.host}:{settings.port}/{target}")
    return conn


def create_database(admin_conn, name: str) -> None:
    """
    Create a database, dropping a stale one of the same name first.

    Args:
        admin_conn: Autocommit connection to the maintenance database
        name: Database name (allow-listed)
    """
    name = validate_identifier(name, "database")
    admin_conn.execute(
        sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(name))
    )
    admin_conn.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(name)))
    logger.info(f"Created database {name}")


def drop_database(admin_conn, name: str) -> None:
    """
    Drop a database if it exists.

    Args:
        admin_conn: Autocommit connection to the maintenance database
        name: Database name (allow-listed)
    """
    name = validate_identifier(name, "database")
    admin_conn.execute(
        sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(name))
    )
    logger.info(f"Dropped database {name}")
