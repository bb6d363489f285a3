"""
Dedup Store

Tracks which relay event ids and which derived segment keys have already been
ingested. Both sets only grow until an explicit reset. An optional per-set cap
evicts the oldest entries first; without it growth is unbounded.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional

from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="storage")

SEEN_EVENTS_KEY = "transcription-processed-requests"
SEEN_SEGMENTS_KEY = "transcription-processed-segments"


class _BoundedSet:
    """Insertion-ordered set with optional LRU eviction."""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._items: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, key: str) -> int:
        """Add key, returning how many entries were evicted."""
        if key in self._items:
            self._items.move_to_end(key)
            return 0
        self._items[key] = None
        evicted = 0
        if self.max_entries is not None:
            while len(self._items) > self.max_entries:
                self._items.popitem(last=False)
                evicted += 1
        return evicted

    def touch(self, key: str) -> None:
        if key in self._items:
            self._items.move_to_end(key)

    def clear(self) -> None:
        self._items.clear()

    def to_list(self) -> List[str]:
        return list(self._items)


class DedupState:
    """The two seen-sets persisted across polls."""

    def __init__(self, max_entries: Optional[int] = None):
        self.seen_event_ids = _BoundedSet(max_entries)
        self.seen_segment_keys = _BoundedSet(max_entries)


class DedupStore:
    """Seen-set bookkeeping for events and segments."""

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        self.max_entries = max_entries
        self.state = DedupState(max_entries)
        self.dirty = False

    @property
    def event_count(self) -> int:
        return len(self.state.seen_event_ids)

    @property
    def segment_count(self) -> int:
        return len(self.state.seen_segment_keys)

    def has_event(self, event_id: str) -> bool:
        found = event_id in self.state.seen_event_ids
        if found:
            self.state.seen_event_ids.touch(event_id)
        return found

    def mark_event(self, event_id: str) -> None:
        evicted = self.state.seen_event_ids.add(event_id)
        self.dirty = True
        if evicted:
            logger.debug(f"Evicted {evicted} oldest event ids (cap {self.max_entries})")

    def has_segment(self, key: str) -> bool:
        found = key in self.state.seen_segment_keys
        if found:
            self.state.seen_segment_keys.touch(key)
        return found

    def mark_segment(self, key: str) -> None:
        evicted = self.state.seen_segment_keys.add(key)
        self.dirty = True
        if evicted:
            logger.debug(f"Evicted {evicted} oldest segment keys (cap {self.max_entries})")

    def reset(self) -> None:
        self.state.seen_event_ids.clear()
        self.state.seen_segment_keys.clear()
        self.dirty = True

    def snapshot(self) -> Dict[str, List[str]]:
        """Serialize both sets as arrays of strings under their stable keys."""
        return {
            SEEN_EVENTS_KEY: self.state.seen_event_ids.to_list(),
            SEEN_SEGMENTS_KEY: self.state.seen_segment_keys.to_list(),
        }

    def restore(self, blob: Optional[Dict[str, Any]]) -> None:
        """Replace both sets from a snapshot. Missing or non-list entries load as empty."""
        self.state = DedupState(self.max_entries)
        blob = blob or {}
        for key, target in (
            (SEEN_EVENTS_KEY, self.state.seen_event_ids),
            (SEEN_SEGMENTS_KEY, self.state.seen_segment_keys),
        ):
            values = blob.get(key)
            if values is None:
                continue
            if not isinstance(values, list):
                logger.warning(f"Ignoring persisted '{key}': expected a list, got {type(values).__name__}")
                continue
            self._load_into(target, values)
        self.dirty = False

    @staticmethod
    def _load_into(target: _BoundedSet, values: Iterable[Any]) -> None:
        for value in values:
            if isinstance(value, str):
                target.add(value)
