from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_DATE_FORMATS,
    DEFAULT_FILES,
    DatabaseConfig,
    ImportConfig,
    PipelineConfig,
)
from ..models.records import EntityKind

"""Config loader for the CSV import CLI.

Responsibilities:
- Load YAML (config/import.yml by default)
- Validate against the packaged JSON schema (config_schema.json, no unknown keys)
- Apply defaults (file names, currency, epsilon, date formats)
- Build the frozen ImportConfig / PipelineConfig handed to the pipeline
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "build_pipeline_config",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not valid JSON, or the config data
            fails validation (missing required keys, wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        location = ".".join(str(p) for p in e.absolute_path)
        prefix = f"{location}: " if location else ""
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e


def _epsilon(raw: Any) -> Decimal:
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ConfigError(f"pipeline.epsilon is not a number: {raw!r}") from None
    if value < 0:
        raise ConfigError(f"pipeline.epsilon must not be negative: {raw!r}")
    return value


def build_pipeline_config(raw: dict[str, Any] | None) -> PipelineConfig:
    """Build PipelineConfig from the (already validated) `pipeline` section."""
    raw = raw or {}
    aliases_raw = raw.get("column_aliases") or {}
    return PipelineConfig(
        default_currency=str(raw.get("default_currency", "USD")).upper(),
        epsilon=_epsilon(raw.get("epsilon", "0.01")),
        date_formats=tuple(raw.get("date_formats") or DEFAULT_DATE_FORMATS),
        null_sentinels=frozenset(s.strip().upper() for s in raw.get("null_sentinels") or []),
        column_aliases={EntityKind(kind): dict(mapping) for kind, mapping in aliases_raw.items()},
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    files = dict(DEFAULT_FILES)
    for kind, name in (data.get("files") or {}).items():
        files[EntityKind(kind)] = name

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        source_directory=data["source_directory"],
        files=files,
        pipeline=build_pipeline_config(data.get("pipeline")),
        database=db,
        tenant_id=data.get("tenant_id"),
    )
