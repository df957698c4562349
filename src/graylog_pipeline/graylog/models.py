# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""
Search window and response envelope models.

The search API answers with an envelope of the form::

    {
      "messages": [
        {"message": {...event fields...}, "index": "graylog_42"},
        ...
      ],
      "total_results": 3
    }

Only the envelope is validated. The inner ``message`` is an opaque event
and is forwarded as-is.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from core.utils.json_serializers import format_utc_timestamp


@dataclass(frozen=True)
class TimeWindow:
    """Half-open search range ``[start, end)``."""

    start: datetime
    end: datetime

    @classmethod
    def last(cls, duration: timedelta, now: datetime) -> "TimeWindow":
        """Window covering ``duration`` up to ``now``."""
        return cls(start=now - duration, end=now)

    @property
    def is_valid(self) -> bool:
        """Both ends are aware datetimes and start is strictly before end."""
        if not isinstance(self.start, datetime) or not isinstance(self.end, datetime):
            return False
        if self.start.tzinfo is None or self.end.tzinfo is None:
            return False
        return self.start < self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def as_params(self) -> dict[str, str]:
        return {
            "from": format_utc_timestamp(self.start),
            "to": format_utc_timestamp(self.end),
        }

    def __str__(self) -> str:
        return f"{format_utc_timestamp(self.start)} -> {format_utc_timestamp(self.end)}"


class SearchMessage(BaseModel):
    """
    One hit in a search response.

    A hit that is not an object is taken to be the bare event itself.
    """

    message: Any = Field(default=None, description="Opaque event payload")
    index: Optional[str] = Field(default=None, description="Index the hit came from")

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_hit(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return data
        return {"message": data}


class SearchResponse(BaseModel):
    """
    Envelope returned by ``/api/search/universal/absolute``.

    ``messages`` may be absent or null when the window holds nothing.
    """

    messages: Optional[list[SearchMessage]] = Field(default=None)
    total_results: Optional[int] = Field(default=None)

    @classmethod
    def from_views_payload(cls, payload: Any) -> "SearchResponse":
        """
        Normalise a ``/api/views/search/messages`` body into the same envelope.

        That endpoint lists bare messages instead of ``{"message": ...}`` hits.
        """
        if isinstance(payload, dict) and isinstance(payload.get("messages"), list):
            payload = {
                **payload,
                "messages": [{"message": m} for m in payload["messages"]],
            }
        return cls.model_validate(payload)

    def events(self) -> list[Any]:
        """Inner event payloads in response order, one per hit, unchanged."""
        return [m.message for m in self.messages or []]
