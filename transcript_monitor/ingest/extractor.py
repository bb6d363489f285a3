"""
Transcript Segment Extraction

Turns the raw content of one transcript event into normalized Segments.
Upstream senders disagree on shape: content may arrive as a JSON string or
an object, and the segment list may live under `segments` or
`transcript_segments`. `classify_content` resolves the shape; extraction
only ever sees the resolved form.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from transcript_monitor.errors import ExtractionSkipped, MalformedPayload
from transcript_monitor.schemas.events import Event, Segment
from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="poller")

SEGMENT_LIST_FIELDS = ("segments", "transcript_segments")
DEFAULT_LANGUAGE = "en"


@dataclass(frozen=True)
class SegmentListContent:
    """Content carrying a segment list under one of the known field names."""

    field_name: str
    entries: List[Any]
    language: Optional[str] = None


@dataclass(frozen=True)
class EmptyContent:
    """Parsed content with no segment list; yields zero segments."""

    language: Optional[str] = None


@dataclass(frozen=True)
class UnparseableContent:
    """String content that is not valid JSON."""

    reason: str
    preview: str = field(default="")


ContentShape = Union[SegmentListContent, EmptyContent, UnparseableContent]


def classify_content(raw: Any) -> ContentShape:
    """Resolve a raw event payload into one of the known content shapes."""
    content = raw
    if isinstance(raw, (str, bytes)):
        try:
            content = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
            return UnparseableContent(reason=str(exc), preview=text[:100])

    if not isinstance(content, dict):
        return EmptyContent()

    language = content.get("language") or None
    for field_name in SEGMENT_LIST_FIELDS:
        entries = content.get(field_name)
        if isinstance(entries, list):
            return SegmentListContent(field_name=field_name, entries=entries, language=language)
    return EmptyContent(language=language)


def format_offset(value: float) -> str:
    """Render an offset the way it appears in persisted segment keys (1.0 -> "1")."""
    if math.isfinite(value) and float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def build_segment_key(segment_id: Optional[str], text: str, start: float, end: float) -> str:
    """Content-based dedup identity: id-or-empty, trimmed text, start and end."""
    return f"{segment_id or ''}-{text}-{format_offset(start)}-{format_offset(end)}"


def _to_offset(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ExtractionSkipped(f"non-numeric offset {value!r}") from exc
    if not math.isfinite(number):
        raise ExtractionSkipped(f"non-finite offset {value!r}")
    return number


def _to_confidence(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_segment(
    entry: Any,
    event: Event,
    content_language: Optional[str] = None,
) -> Segment:
    """
    Build one Segment from a raw segment entry.

    Raises:
        ExtractionSkipped: when the entry has no usable text or no start offset
    """
    if not isinstance(entry, dict):
        raise ExtractionSkipped(f"segment entry is {type(entry).__name__}, not an object")

    raw_text = entry.get("text")
    if not isinstance(raw_text, str) or not raw_text.strip():
        raise ExtractionSkipped("segment text is empty")
    if "start" not in entry:
        raise ExtractionSkipped("segment has no start offset")

    text = raw_text.strip()
    start = _to_offset(entry.get("start"))
    end = _to_offset(entry.get("end"))

    raw_id = entry.get("id")
    segment_id = str(raw_id) if raw_id not in (None, "") else None

    speaker = entry.get("speaker") or f"SPEAKER_{entry.get('speaker_id') or 0}"
    language = content_language or entry.get("language") or DEFAULT_LANGUAGE

    return Segment(
        segment_key=build_segment_key(segment_id, text, start, end),
        segment_id=segment_id,
        speaker=str(speaker),
        text=text,
        start_offset=start,
        end_offset=end,
        confidence=_to_confidence(entry.get("confidence")),
        source=event.method,
        language=str(language),
        event_timestamp=event.received_at,
    )


def extract_segments(event: Event) -> List[Segment]:
    """
    Extract every usable segment from a transcript event.

    Unusable entries are skipped individually; only unparseable content fails
    the whole event.

    Raises:
        MalformedPayload: when string content is not valid JSON
    """
    shape = classify_content(event.raw_payload)

    if isinstance(shape, UnparseableContent):
        raise MalformedPayload(
            f"Event {event.id} content is not JSON ({shape.reason}): {shape.preview!r}"
        )
    if isinstance(shape, EmptyContent):
        logger.debug(f"Event {event.id} carries no segment list")
        return []

    segments: List[Segment] = []
    skipped = 0
    for entry in shape.entries:
        try:
            segments.append(build_segment(entry, event, shape.language))
        except ExtractionSkipped as exc:
            skipped += 1
            logger.debug(f"Skipping segment in event {event.id}: {exc}")

    if skipped:
        logger.debug(
            f"Event {event.id}: extracted {len(segments)} segments, skipped {skipped} "
            f"(from '{shape.field_name}')"
        )
    return segments
