"""
Configuration system for dbsense.

Implements 12-factor config principles:
- Environment variables as primary config source
- Optional JSON/YAML config file for local development
- Policy thresholds default to the engine's fixed constants

Usage:
    from dbsense.config import get_config

    config = get_config()
    executor = await AsyncpgExecutor.create(config.dsn, ...)
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dbsense.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Fixed policy constants
SLOW_QUERY_THRESHOLD_MS = 1000.0
SLOW_QUERY_LIMIT = 20
BLOAT_RATIO_THRESHOLD = 0.2

ENV_PREFIX = "DBSENSE_"


class Config(BaseModel):
    """
    dbsense configuration.

    Loaded from environment variables and optional config file.
    """

    model_config = ConfigDict(frozen=True)

    # Connection
    dsn: str | None = Field(
        default=None,
        description="PostgreSQL connection string",
    )
    schema_name: str = Field(
        default="public",
        description="Application schema the engine is scoped to",
    )
    min_pool_size: int = Field(default=1, ge=1)
    max_pool_size: int = Field(default=5, ge=1)

    # Policy thresholds
    slow_query_threshold_ms: float = Field(
        default=SLOW_QUERY_THRESHOLD_MS,
        ge=0,
        description="Mean execution time above which a query is slow",
    )
    slow_query_limit: int = Field(
        default=SLOW_QUERY_LIMIT,
        ge=1,
        description="Maximum slow queries to report",
    )
    bloat_ratio_threshold: float = Field(
        default=BLOAT_RATIO_THRESHOLD,
        gt=0,
        description="Dead/live tuple ratio above which a table is reindexed",
    )

    # Timeouts
    statement_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-statement timeout applied by the executor",
    )
    maintenance_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Overall timeout for a maintenance run (None = unbounded)",
    )

    # Maintenance
    reindex_concurrently: bool = Field(
        default=False,
        description="Use REINDEX TABLE CONCURRENTLY (PostgreSQL 12+)",
    )


def _parse_env_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_env_int(value: str | None, default: int) -> int:
    """Parse integer from environment variable."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Could not parse integer setting %r, using %s", value, default)
        return default


def _parse_env_float(value: str | None, default: float | None) -> float | None:
    """Parse float from environment variable."""
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Could not parse float setting %r, using %s", value, default)
        return default


def _env(name: str) -> str | None:
    return os.environ.get(ENV_PREFIX + name)


def _build(data: dict[str, Any]) -> Config:
    try:
        return Config(**data)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first["loc"]) or None
        raise ConfigurationError(f"Invalid configuration: {first['msg']}", config_key=key) from e


def load_config_from_env() -> Config:
    """
    Load configuration from environment variables.

    Examples:
    - DBSENSE_DSN=postgresql://app@localhost/app
    - DBSENSE_SCHEMA=public
    - DBSENSE_SLOW_QUERY_THRESHOLD_MS=500
    - DBSENSE_REINDEX_CONCURRENTLY=true
    """
    config_kwargs: dict[str, Any] = {
        "dsn": _env("DSN"),
        "schema_name": _env("SCHEMA") or "public",
        "min_pool_size": _parse_env_int(_env("MIN_POOL_SIZE"), 1),
        "max_pool_size": _parse_env_int(_env("MAX_POOL_SIZE"), 5),
        "slow_query_threshold_ms": _parse_env_float(
            _env("SLOW_QUERY_THRESHOLD_MS"), SLOW_QUERY_THRESHOLD_MS
        ),
        "slow_query_limit": _parse_env_int(_env("SLOW_QUERY_LIMIT"), SLOW_QUERY_LIMIT),
        "bloat_ratio_threshold": _parse_env_float(
            _env("BLOAT_RATIO_THRESHOLD"), BLOAT_RATIO_THRESHOLD
        ),
        "statement_timeout_seconds": _parse_env_float(
            _env("STATEMENT_TIMEOUT_SECONDS"), 30.0
        ),
        "maintenance_timeout_seconds": _parse_env_float(
            _env("MAINTENANCE_TIMEOUT_SECONDS"), None
        ),
        "reindex_concurrently": _parse_env_bool(_env("REINDEX_CONCURRENTLY"), False),
    }
    return _build(config_kwargs)


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON or YAML file.

    Falls back to environment variables when the file does not exist.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    return _build(data)


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from:
    1. DBSENSE_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = _env("CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
