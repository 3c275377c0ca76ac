"""
JSON serialization utilities for backfill documents.

Document fields may hold values the standard encoder rejects, such as
datetimes written by the batch writer or UUIDs used as ids by callers.

Example:
    >>> from backfill.serialization import json_dumps, json_loads
    >>> from datetime import datetime, UTC
    >>>
    >>> payload = json_dumps({"updated_at": datetime(2024, 1, 1, tzinfo=UTC)})
    >>> json_loads(payload)
    {'updated_at': '2024-01-01T00:00:00+00:00'}
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


class BackfillJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime, date and Enum values.

    - UUID objects: converted to their string representation
    - datetime/date objects: converted to ISO 8601 strings
    - Enum members: converted to their value
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime | date):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize an object to a JSON string using BackfillJSONEncoder."""
    return json.dumps(obj, cls=BackfillJSONEncoder)


def json_loads(s: str) -> Any:
    """
    Deserialize a JSON string.

    Datetime and UUID strings are returned as strings; converting them back
    is the caller's responsibility.
    """
    return json.loads(s)


__all__ = [
    "BackfillJSONEncoder",
    "json_dumps",
    "json_loads",
]
