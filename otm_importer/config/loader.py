from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import DatabaseConfig, ImportConfig, LimitsConfig

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate it against config_schema.json (unknown keys are rejected)
- Apply defaults (limits, database) for omitted keys
"""

__all__ = [
    "ConfigError",
    "SCHEMA_PATH",
    "load_config",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or if
            the config data fails validation (missing keys, wrong types,
            unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    limits_raw = data.get("limits") or {}
    defaults = LimitsConfig()
    limits = LimitsConfig(
        max_upload_bytes=limits_raw.get("max_upload_bytes", defaults.max_upload_bytes),
        context_ttl_seconds=limits_raw.get("context_ttl_seconds", defaults.context_ttl_seconds),
        artifact_ttl_seconds=limits_raw.get("artifact_ttl_seconds", defaults.artifact_ttl_seconds),
        draft_ttl_seconds=limits_raw.get("draft_ttl_seconds", defaults.draft_ttl_seconds),
        preview_limit=limits_raw.get("preview_limit", defaults.preview_limit),
    )
    if limits.artifact_ttl_seconds < limits.context_ttl_seconds:
        raise ConfigError("limits.artifact_ttl_seconds must not be shorter than limits.context_ttl_seconds")

    return ImportConfig(
        state_directory=data["state_directory"],
        upload_directory=data["upload_directory"],
        limits=limits,
        database=db,
    )
