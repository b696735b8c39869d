"""
Configuration constants for schema-migrator.

This module contains global constants used across the application
to avoid tight coupling between modules.
"""

# Environment variables read by load_database_settings()
ENV_DB_HOST = "DB_HOST"
ENV_DB_PORT = "DB_PORT"
ENV_DB_NAME = "DB_NAME"
ENV_DB_USERNAME = "DB_USERNAME"
ENV_DB_PASSWORD = "DB_PASSWORD"
ENV_DB_SSL = "DB_SSL"
ENV_MIGRATIONS_DIR = "MIGRATIONS_DIR"

DEFAULT_DB_HOST = "localhost"
DEFAULT_DB_PORT = 5432
DEFAULT_DB_NAME = "mindsdb_rag"
DEFAULT_DB_USERNAME = "postgres"

# Maintenance database used to create and drop ephemeral databases
ADMIN_DATABASE = "postgres"

DEFAULT_SCHEMA = "public"

# Ledger table names
LEDGER_TABLE = "schema_migrations"
BASE_LEDGER_TABLE = "base_schema_migrations"

# Appended to DB_NAME to derive the ephemeral test database name
EPHEMERAL_DB_SUFFIX = "_migration_test"

# PostgreSQL truncates identifiers longer than this
MAX_IDENTIFIER_LENGTH = 63
