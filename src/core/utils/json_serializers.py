# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Shared JSON serialization utilities for type-safe JSON encoding."""

from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any


def format_utc_timestamp(value: datetime) -> str:
    """
    Render a datetime as ISO-8601 UTC with millisecond precision and a Z suffix.

    Naive datetimes are taken to be UTC already. This is the wire format of
    the search API time range and of the checkpoint file.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def parse_utc_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 string into an offset-aware UTC datetime.

    Accepts a trailing Z as well as explicit offsets; naive values are
    treated as UTC.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp
        TypeError: If value is not a string
    """
    if not isinstance(value, str):
        raise TypeError(f"Expected ISO-8601 string, got {type(value).__name__}")
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _serialize_known_type(obj: Any) -> tuple[bool, Any]:
    """Try to serialize by known type. Returns (handled, result)."""
    if isinstance(obj, datetime):
        return True, format_utc_timestamp(obj)
    if isinstance(obj, date):
        return True, obj.isoformat()
    if isinstance(obj, Decimal):
        return True, float(obj)
    if isinstance(obj, Path):
        return True, str(obj)
    if isinstance(obj, (bytes, bytearray)):
        return True, obj.decode("utf-8", errors="replace")
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON serializer.

    Keeps proper types instead of converting everything to strings:
    - datetime → ISO 8601 UTC string with Z suffix
    - date → ISO 8601 string
    - Decimal → float (for precise numeric fields)
    - Path → string
    - bytes → UTF-8 string
    - Enums → value
    - Everything else → string (fallback)

    Used both for log lines and for forwarding event payloads, so numeric
    fields never turn into strings downstream.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation with proper types
    """
    handled, result = _serialize_known_type(obj)
    if handled:
        return result
    if hasattr(obj, "value"):
        return obj.value
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


__all__ = ["json_serializer", "format_utc_timestamp", "parse_utc_timestamp"]
