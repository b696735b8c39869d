"""
Migration test harness: UP, validate and DOWN against an ephemeral database.
"""

from schema_migrator.harness.runner import (
    HarnessResult,
    HarnessState,
    MigrationTestHarness,
)

__all__ = ["HarnessResult", "HarnessState", "MigrationTestHarness"]
