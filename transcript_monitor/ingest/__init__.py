"""
Ingest layer: relay polling, segment extraction, activity detection and backoff
"""

from .activity import ActivitySignal, ActivityState, ActivityWindowTracker
from .backoff import BackoffController
from .extractor import classify_content, extract_segments
from .poller import TranscriptPoller
from .scheduler import PollScheduler

__all__ = [
    "ActivitySignal",
    "ActivityState",
    "ActivityWindowTracker",
    "BackoffController",
    "classify_content",
    "extract_segments",
    "TranscriptPoller",
    "PollScheduler",
]
