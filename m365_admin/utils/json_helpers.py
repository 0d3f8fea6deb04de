"""JSON serialization helpers with consistent error handling."""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from loguru import logger


def _default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def safe_json_loads(text: Optional[str], default: Any = ...) -> Any:
    """Safely load JSON, returning ``default`` (an empty list if omitted) on error."""
    if not text:
        return [] if default is ... else default

    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError) as exc:
        logger.warning("Failed to parse JSON: {}", exc)
        return [] if default is ... else default


def safe_json_loads_list(text: Optional[str]) -> List[str]:
    """Load a JSON list of strings; anything else yields an empty list."""
    parsed = safe_json_loads(text, default=[])
    if not isinstance(parsed, list):
        logger.warning("JSON value is not a list, returning empty list")
        return []
    return [str(item) for item in parsed if item]


def safe_json_dumps(value: Any, default: str = "[]", *, indent: int | None = None) -> str:
    """Serialize ``value``; dates, enums and paths are converted, failures yield ``default``."""
    try:
        return json.dumps(value, default=_default, indent=indent)
    except (TypeError, ValueError) as exc:
        logger.warning("Failed to serialize to JSON: {}", exc)
        return default
