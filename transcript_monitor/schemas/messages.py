"""
API Schemas

Request and response models for the monitor's HTTP surface.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from transcript_monitor.schemas.events import Segment


class MonitorStatus(BaseModel):
    """Snapshot of the polling engine for the dashboard."""

    is_monitoring: bool
    is_active: bool = Field(..., description="Recording in progress (heartbeat window open)")
    is_loading: bool
    backoff_delay_ms: int
    needs_api_key: bool = False
    poll_interval_ms: int
    last_update: Optional[datetime] = Field(None, description="Last successful transcript poll")
    segment_count: int
    seen_event_count: int
    seen_segment_count: int
    status_log: List[str] = Field(default_factory=list, description="Newest first")


class SegmentListResponse(BaseModel):
    total: int
    segments: List[Segment]


class ConfigUpdate(BaseModel):
    """Runtime configuration change; omitted fields stay as they are."""

    transcript_stream_url: Optional[str] = None
    heartbeat_stream_url: Optional[str] = None
    api_key: Optional[str] = None
    poll_interval_ms: Optional[int] = Field(None, gt=0, description="2000ms or more is recommended")

    model_config = {
        "json_schema_extra": {
            "example": {
                "transcript_stream_url": "https://webhook.site/token/<token>/requests",
                "poll_interval_ms": 5000,
            }
        }
    }


class ResetRequest(BaseModel):
    clear_segments: bool = Field(False, description="Also drop already collected segments")


class PollResponse(BaseModel):
    started: bool = Field(..., description="False if a poll was already in flight")
    added: int = 0
