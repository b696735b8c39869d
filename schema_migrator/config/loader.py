"""
Configuration loader for schema-migrator.

Connection settings come from environment variables only, so credentials
never live in files that get committed. The schema expectation and the
baseline schema are YAML files validated with Pydantic; both ship with
packaged defaults.

Functions:
    load_database_settings: Build DatabaseSettings from DB_* environment variables
    load_expectation: Load a SchemaExpectation YAML file (or the packaged default)
    load_baseline: Load a BaselineSchema YAML file (or the packaged default)
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from schema_migrator.config.constants import (
    DEFAULT_DB_HOST,
    DEFAULT_DB_NAME,
    DEFAULT_DB_PORT,
    DEFAULT_DB_USERNAME,
    ENV_DB_HOST,
    ENV_DB_NAME,
    ENV_DB_PASSWORD,
    ENV_DB_PORT,
    ENV_DB_SSL,
    ENV_DB_USERNAME,
)
from schema_migrator.exceptions import ConfigFileNotFoundError, ConfigValidationError

from .schema import BaselineSchema, DatabaseSettings, SchemaExpectation

logger = logging.getLogger(__name__)

# Packaged defaults live next to the schema subpackage
_SCHEMA_DATA_DIR = Path(__file__).resolve().parent.parent / "schema"
DEFAULT_EXPECTATION_PATH = _SCHEMA_DATA_DIR / "expectation.yaml"
DEFAULT_BASELINE_PATH = _SCHEMA_DATA_DIR / "baseline.yaml"


def load_database_settings(environ: Mapping[str, str] | None = None) -> DatabaseSettings:
    """
    Build connection settings from environment variables.

    Reads DB_HOST, DB_PORT, DB_NAME, DB_USERNAME, DB_PASSWORD and DB_SSL.
    Unset variables fall back to the local development defaults. DB_SSL
    enables TLS only when set to "true" (case-insensitive).

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Validated DatabaseSettings

    Raises:
        ConfigValidationError: If a value fails validation (e.g. non-numeric port)

    Example:
        >>> settings = load_database_settings({"DB_NAME": "shop", "DB_PORT": "6543"})
        >>> settings.port
        6543
    """
    if environ is None:
        environ = os.environ

    raw = {
        "host": environ.get(ENV_DB_HOST, DEFAULT_DB_HOST),
        "port": environ.get(ENV_DB_PORT, str(DEFAULT_DB_PORT)),
        "name": environ.get(ENV_DB_NAME, DEFAULT_DB_NAME),
        "user": environ.get(ENV_DB_USERNAME, DEFAULT_DB_USERNAME),
        "password": environ.get(ENV_DB_PASSWORD, ""),
        "ssl": environ.get(ENV_DB_SSL, "false").strip().lower() == "true",
    }

    try:
        settings = DatabaseSettings.model_validate(raw)
    except ValidationError as e:
        raise ConfigValidationError(
            "Database settings validation failed:\n" + _format_errors(e, env=True)
        ) from e

    logger.debug(
        "Loaded database settings",
        extra={
            "context": {
                "host": settings.host,
                "port": settings.port,
                "database": settings.name,
                "ssl": settings.ssl,
            }
        },
    )
    return settings


def load_expectation(path: str | Path | None = None) -> SchemaExpectation:
    """
    Load a schema expectation YAML file.

    Args:
        path: YAML file path, or None for the packaged expectation.yaml

    Returns:
        Validated SchemaExpectation

    Raises:
        ConfigFileNotFoundError: If the file does not exist
        ConfigValidationError: If YAML is invalid or validation fails
    """
    return _load_yaml_model(path or DEFAULT_EXPECTATION_PATH, SchemaExpectation)


def load_baseline(path: str | Path | None = None) -> BaselineSchema:
    """
    Load a declarative baseline schema YAML file.

    Args:
        path: YAML file path, or None for the packaged baseline.yaml

    Returns:
        Validated BaselineSchema

    Raises:
        ConfigFileNotFoundError: If the file does not exist
        ConfigValidationError: If YAML is invalid, an identifier is rejected
            by the allow-list, or validation fails
    """
    return _load_yaml_model(path or DEFAULT_BASELINE_PATH, BaselineSchema)


def _load_yaml_model(path: str | Path, model: type[BaseModel]) -> BaseModel:
    path = Path(path)

    if not path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {path}")

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(f"Failed to read configuration file {path}: {e}") from e

    if raw is None:
        raise ConfigValidationError(f"Configuration file is empty: {path}")

    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed in {path}:\n" + _format_errors(e)
        ) from e


_ENV_NAMES = {
    "host": ENV_DB_HOST,
    "port": ENV_DB_PORT,
    "name": ENV_DB_NAME,
    "user": ENV_DB_USERNAME,
    "password": ENV_DB_PASSWORD,
    "ssl": ENV_DB_SSL,
}


def _format_errors(e: ValidationError, env: bool = False) -> str:
    error_messages = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        if env:
            loc = _ENV_NAMES.get(loc, loc)
        error_messages.append(f"  - {loc}: {error['msg']}")
    return "\n".join(error_messages)
