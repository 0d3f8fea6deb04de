"""Input validation helpers shared by the services and the CLI."""

from __future__ import annotations

import re
from typing import Optional

_SEARCH_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _.\-]{0,199}$")
_GUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def validate_run_id(run_id: Optional[int]) -> tuple[bool, Optional[str]]:
    """Validate a purge run ID.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if run_id is None:
        return False, "Run ID is required"

    if not isinstance(run_id, int) or isinstance(run_id, bool):
        return False, f"Run ID must be an integer, got {type(run_id).__name__}"

    if run_id <= 0:
        return False, "Run ID must be a positive integer"

    return True, None


def validate_limit(limit: Optional[int], min_value: int = 1, max_value: int = 10000) -> tuple[bool, Optional[str]]:
    """Validate a limit parameter.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if limit is None:
        return True, None

    if not isinstance(limit, int):
        return False, f"Limit must be an integer, got {type(limit).__name__}"

    if limit < min_value:
        return False, f"Limit must be at least {min_value}, got {limit}"

    if limit > max_value:
        return False, f"Limit must be at most {max_value}, got {limit}"

    return True, None


def validate_search_name(name: Optional[str]) -> tuple[bool, Optional[str]]:
    """Compliance search names end up inside cmdlet arguments; keep them plain."""
    if not name:
        return False, "Search name is required"
    if not _SEARCH_NAME_PATTERN.match(name):
        return False, (
            "Search name may contain letters, digits, spaces, '.', '_' and '-' "
            "and must be at most 200 characters"
        )
    return True, None


def is_guid(value: Optional[str]) -> bool:
    return bool(value and _GUID_PATTERN.match(value.strip()))
