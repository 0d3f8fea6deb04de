"""Tests for centralized JSON helper utilities."""

import json
from datetime import date, datetime
from pathlib import Path

from m365_admin.services.polling import JobStatus
from m365_admin.utils.json_helpers import (
    safe_json_dumps,
    safe_json_loads,
    safe_json_loads_list,
)


class TestSafeJsonLoads:
    """Test safe_json_loads function."""

    def test_valid_json_string(self):
        assert safe_json_loads('{"key": "value"}') == {"key": "value"}

    def test_none_and_empty_input(self):
        assert safe_json_loads(None) == []
        assert safe_json_loads("") == []

    def test_invalid_json(self):
        """Invalid JSON falls back to the default instead of raising."""
        assert safe_json_loads("{invalid json}") == []

    def test_custom_default(self):
        assert safe_json_loads(None, default={}) == {}
        assert safe_json_loads("nope", default=None) is None


class TestSafeJsonLoadsList:
    """Test safe_json_loads_list function."""

    def test_valid_list(self):
        assert safe_json_loads_list('["All", "a@contoso.com"]') == ["All", "a@contoso.com"]

    def test_filters_empty_items_and_stringifies(self):
        assert safe_json_loads_list('["a", "", null, 3]') == ["a", "3"]

    def test_non_list_returns_empty(self):
        assert safe_json_loads_list('{"key": "value"}') == []


class TestSafeJsonDumps:
    """Test safe_json_dumps function."""

    def test_list(self):
        assert safe_json_dumps(["All"]) == '["All"]'

    def test_converts_dates_enums_and_paths(self):
        value = {
            "when": datetime(2024, 1, 2, 3, 4, 5),
            "day": date(2024, 1, 2),
            "status": JobStatus.COMPLETED,
            "path": Path("out") / "x.csv",
        }
        assert json.loads(safe_json_dumps(value)) == {
            "when": "2024-01-02T03:04:05",
            "day": "2024-01-02",
            "status": "Completed",
            "path": str(Path("out") / "x.csv"),
        }

    def test_unserializable_returns_default(self):
        assert safe_json_dumps({"x": object()}) == "[]"
        assert safe_json_dumps({"x": object()}, default="{}") == "{}"
