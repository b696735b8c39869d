"""
Entry point for running schema-migrator as a module.

Enables execution via:
    python -m schema_migrator [command] [options]

This is equivalent to running the installed CLI:
    schema-migrator [command] [options]

Examples:
    python -m schema_migrator --help
    python -m schema_migrator migrate --migrations-dir database/migrations
    python -m schema_migrator verify -d database/migrations --format json
"""

from schema_migrator.cli import app

if __name__ == "__main__":
    app()
