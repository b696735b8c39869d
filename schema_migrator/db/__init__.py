"""PostgreSQL connection helpers."""

from schema_migrator.db.connection import connect, create_database, drop_database

__all__ = ["connect", "create_database", "drop_database"]
