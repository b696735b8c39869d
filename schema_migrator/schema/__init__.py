"""
Schema bootstrap and validation.

Public API:
    - apply_baseline: Create extensions, enums and base tables from baseline.yaml
    - SchemaValidator: Compare the live catalog with a SchemaExpectation
    - ValidationReport: Result of a validation pass
"""

from schema_migrator.schema.baseline import apply_baseline, render_baseline
from schema_migrator.schema.validator import (
    SchemaSnapshot,
    SchemaValidator,
    ValidationReport,
)

__all__ = [
    "SchemaSnapshot",
    "SchemaValidator",
    "ValidationReport",
    "apply_baseline",
    "render_baseline",
]
