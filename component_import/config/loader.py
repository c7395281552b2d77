from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.component import CanonicalType
from ..models.config_models import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNK_TIMEOUT_SECONDS,
    DatabaseConfig,
    DuplicatePolicy,
    ImportConfig,
    ImportOptions,
)

"""Config loader.

Responsibilities:
- Load YAML (default config/import.yml)
- Validate against the packaged config_schema.json
- Apply defaults (chunk_size=200, chunk_timeout_seconds=30, duplicate_policy=append)
- Build the immutable ImportConfig

Every failure surfaces as ConfigError.
"""

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ConfigError",
    "ImportConfig",
    "load_config",
    "parse_config",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _load_schema() -> dict[str, Any]:
    try:
        text = resources.files("component_import.config").joinpath("config_schema.json").read_text(
            encoding="utf-8"
        )
        return json.loads(text)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"invalid schema file: {e}") from e


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: unreadable schema, or the data violates it (unknown keys,
            wrong types, out of range values)
    """
    schema = _load_schema()
    try:
        jsonschema.validate(data, schema)
    except ValidationError as e:
        where = ".".join(str(p) for p in e.absolute_path)
        prefix = f"{where}: " if where else ""
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e


def _alias_table(raw: dict[str, str], where: str) -> dict[str, str]:
    table: dict[str, str] = {}
    for alias, canonical in raw.items():
        try:
            table[str(alias)] = CanonicalType(str(canonical).upper()).value
        except ValueError as e:
            raise ConfigError(f"{where}: unknown canonical type '{canonical}' for alias '{alias}'") from e
    return table


def parse_config(data: dict[str, Any]) -> ImportConfig:
    """Validate an already parsed mapping and build ImportConfig."""
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")
    _validate_config_schema(data)

    try:
        options = ImportOptions(
            chunk_size=data.get("chunk_size", DEFAULT_CHUNK_SIZE),
            chunk_timeout_seconds=data.get("chunk_timeout_seconds", DEFAULT_CHUNK_TIMEOUT_SECONDS),
            duplicate_policy=DuplicatePolicy(data.get("duplicate_policy", DuplicatePolicy.APPEND.value)),
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    project_aliases = {
        str(project): _alias_table(table or {}, f"project_type_aliases.{project}")
        for project, table in (data.get("project_type_aliases") or {}).items()
    }
    return ImportConfig(
        options=options,
        database=db,
        type_aliases=_alias_table(data.get("type_aliases") or {}, "type_aliases"),
        project_type_aliases=project_aliases,
        error_log_dir=data.get("error_log_dir", "logs"),
    )


def load_config(path: Path | str = DEFAULT_CONFIG_PATH) -> ImportConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    return parse_config(data)
