"""
Codec - JSON marshalling with the Data API extended-JSON conventions.

Dates travel as ``{"$date": <epoch millis>}`` and UUIDs as
``{"$uuid": "<string>"}``.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

__all__ = ["JsonCodec"]


class JsonCodec:
    """Marshal Python objects to JSON text and back."""

    def marshal(self, value: Any) -> str:
        """
        Encode a value to JSON.

        Raises:
            TypeError: If the value holds an unsupported type.
            ValueError: If the value is circular or holds NaN/Infinity.
        """
        return json.dumps(value, default=self._encode_extended, allow_nan=False, separators=(",", ":"))

    def unmarshal(self, text: str | bytes) -> Any:
        """
        Decode JSON text.

        Raises:
            ValueError: If the text is not valid JSON or holds an invalid
                extended value.
        """
        return json.loads(text, object_hook=self._decode_extended)

    @staticmethod
    def _encode_extended(value: Any) -> Any:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return {"$date": int(value.timestamp() * 1000)}
        if isinstance(value, uuid.UUID):
            return {"$uuid": str(value)}
        if isinstance(value, (set, frozenset)):
            return list(value)
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

    @staticmethod
    def _decode_extended(obj: dict[str, Any]) -> Any:
        if len(obj) == 1:
            if "$date" in obj and isinstance(obj["$date"], (int, float)):
                try:
                    return datetime.fromtimestamp(obj["$date"] / 1000, tz=timezone.utc)
                except (OverflowError, OSError) as e:
                    raise ValueError(f"$date out of range: {obj['$date']}") from e
            if "$uuid" in obj and isinstance(obj["$uuid"], str):
                return uuid.UUID(obj["$uuid"])
        return obj
