"""JSON encoding for shipped log entries and error payloads."""

import enum
import json
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any


class EnhancedJSONEncoder(json.JSONEncoder):
    """Encodes timestamps, enums (TokenType, TokenStatus), UUIDs and pydantic models."""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, enum.Enum):
            return obj.value
        if isinstance(obj, (uuid.UUID, Decimal)):
            return str(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        if hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json")
        return super().default(obj)


def dumps(obj: Any, **kwargs) -> str:
    return json.dumps(obj, cls=EnhancedJSONEncoder, **kwargs)
