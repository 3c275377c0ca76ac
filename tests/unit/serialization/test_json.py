"""
Unit tests for the JSON serialization module.

Tests for:
- BackfillJSONEncoder class
- json_dumps convenience function
- json_loads convenience function
"""

import json
from datetime import UTC, date, datetime
from uuid import uuid4

import pytest

from backfill.config import SelectionStrategy
from backfill.serialization import BackfillJSONEncoder, json_dumps, json_loads


class TestBackfillJSONEncoder:
    """Tests for BackfillJSONEncoder."""

    def test_encodes_uuid(self):
        test_uuid = uuid4()
        result = json_dumps({"id": test_uuid})
        assert str(test_uuid) in result

    def test_encodes_datetime(self):
        now = datetime.now(UTC)
        result = json_dumps({"updated_at": now})
        assert now.isoformat() in result

    def test_encodes_date(self):
        result = json_dumps({"day": date(2024, 3, 1)})
        assert json_loads(result) == {"day": "2024-03-01"}

    def test_encodes_enum_value(self):
        result = json_dumps({"strategy": SelectionStrategy.PRIORITY_FIRST})
        assert json_loads(result) == {"strategy": "priority_first"}

    def test_regular_types_unchanged(self):
        data = {"seller_id": "u-1", "price": 12.5, "active": True, "tags": ["a", "b"]}
        assert json_loads(json_dumps(data)) == data

    def test_unsupported_type_raises(self):
        with pytest.raises(TypeError):
            json_dumps({"value": object()})

    def test_encoder_usable_with_json_module(self):
        result = json.dumps({"at": datetime(2024, 1, 1, tzinfo=UTC)}, cls=BackfillJSONEncoder)
        assert result == '{"at": "2024-01-01T00:00:00+00:00"}'


class TestJsonLoads:
    def test_datetimes_stay_strings(self):
        payload = json_dumps({"updated_at": datetime(2024, 1, 1, tzinfo=UTC)})
        assert json_loads(payload) == {"updated_at": "2024-01-01T00:00:00+00:00"}

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            json_loads("{not json")
