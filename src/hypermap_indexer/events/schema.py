"""Raw log schema loading + validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

SCHEMA_ROOT = Path(__file__).resolve().parent / "schemas"
RAW_LOG_SCHEMA = "raw_log.schema.yaml"


@lru_cache(maxsize=None)
def _load_schema(name: str) -> dict[str, Any]:
    path = SCHEMA_ROOT / name
    schema = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(schema, dict):
        raise ValueError(f"schema {name} must be a mapping")
    Draft202012Validator.check_schema(schema)
    return schema


def load_raw_log_schema() -> dict[str, Any]:
    return _load_schema(RAW_LOG_SCHEMA)


def validate_raw_log(item: Any) -> list[str]:
    """Return human-readable schema violations for one eth_getLogs entry."""
    validator = Draft202012Validator(load_raw_log_schema())
    errors = sorted(validator.iter_errors(item), key=lambda e: list(e.path))
    return [_format_error(error) for error in errors]


def _format_error(error: Any) -> str:
    location = "/".join(str(part) for part in error.path) or "<root>"
    return f"{location}: {error.message}"
