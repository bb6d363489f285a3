"""
Relay Event Schemas

Pydantic models for webhook relay deliveries and the transcript segments
extracted from them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StreamKind(str, Enum):
    """Which relay stream an event was delivered on."""

    TRANSCRIPT = "transcript"
    HEARTBEAT = "heartbeat"


def parse_timestamp(value: Any) -> datetime:
    """Parse relay timestamps ("2024-05-01 10:00:00", ISO-8601, epoch) as aware UTC."""
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Event(BaseModel):
    """One request captured by the relay. Immutable once fetched."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="uuid", description="Relay request id, unique per stream")
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="created_at",
        description="When the relay received the request",
    )
    raw_payload: Any = Field(default=None, alias="content")
    method: str = Field(default="", description="Transport method tag, e.g. POST")
    ip: Optional[str] = None
    source_kind: StreamKind = StreamKind.TRANSCRIPT

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None or value == "":
            raise ValueError("event id is required")
        return str(value)

    @field_validator("received_at", mode="before")
    @classmethod
    def _parse_received_at(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @field_validator("method", mode="before")
    @classmethod
    def _default_method(cls, value: Any) -> str:
        return str(value) if value is not None else ""


class Segment(BaseModel):
    """One normalized spoken-text unit extracted from a transcript event."""

    model_config = ConfigDict(frozen=True)

    segment_key: str = Field(description="Content-based dedup identity")
    segment_id: Optional[str] = Field(default=None, description="Upstream segment id, if any")
    speaker: str
    text: str = Field(min_length=1)
    start_offset: float = 0.0
    end_offset: float = 0.0
    confidence: Optional[float] = None
    source: str = ""
    language: str = "en"
    event_timestamp: datetime

    def display_tuple(self) -> tuple:
        """Identity used when merging into the output collection."""
        return (self.text, self.start_offset, self.end_offset, self.event_timestamp)
