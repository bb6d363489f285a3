"""
Transcript Polling Engine

Each cycle: wait out any rate-limit backoff, check the heartbeat stream for
recording activity, fetch the newest transcript requests, extract segments,
drop anything already seen, and merge the rest into the newest-first output
collection. Cycle-level failures end up in the status feed, never as raised
exceptions; the schedule keeps going.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Tuple

from transcript_monitor.config import Settings
from transcript_monitor.errors import (
    AuthRequired,
    MalformedPayload,
    MonitorError,
    RateLimited,
    TransportError,
)
from transcript_monitor.ingest.activity import ActivitySignal, ActivityWindowTracker
from transcript_monitor.ingest.backoff import BackoffController, Sleeper
from transcript_monitor.ingest.extractor import extract_segments
from transcript_monitor.ingest.scheduler import PollScheduler
from transcript_monitor.memory.dedup_store import DedupStore
from transcript_monitor.memory.state_store import MemoryStateStore, StateStore
from transcript_monitor.schemas.events import Event, Segment, StreamKind
from transcript_monitor.schemas.messages import MonitorStatus
from transcript_monitor.utils.logging import get_logger
from transcript_monitor.utils.status_log import StatusLog

logger = get_logger(__name__, category="poller")

MIN_RECOMMENDED_INTERVAL_MS = 2000
RESET_REPOLL_DELAY_SECONDS = 0.5


class EventFetcher(Protocol):
    async def fetch_events(
        self,
        stream_url: str,
        kind: StreamKind,
        page_size: int = 1,
        api_key: Optional[str] = None,
    ) -> List[Event]:
        ...


def _short(event_id: Optional[str]) -> str:
    return f"{event_id[:8]}..." if event_id else "?"


class TranscriptPoller:
    """Polls the transcript and heartbeat streams and owns all engine state."""

    def __init__(
        self,
        fetcher: EventFetcher,
        transcript_stream_url: str = "",
        heartbeat_stream_url: str = "",
        api_key: Optional[str] = None,
        poll_interval_ms: int = 5000,
        transcript_page_size: int = 1,
        heartbeat_page_size: int = 1,
        dedup_store: Optional[DedupStore] = None,
        state_store: Optional[StateStore] = None,
        backoff: Optional[BackoffController] = None,
        activity_timeout_ms: int = 5000,
        status_log_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the polling engine.

        Args:
            fetcher: Relay client used for both streams
            transcript_stream_url: Relay stream carrying transcription requests
            heartbeat_stream_url: Relay stream carrying audio-byte deliveries
            api_key: Relay API key
            poll_interval_ms: Cadence between cycles
            dedup_store: Seen-set bookkeeping (fresh unbounded store by default)
            state_store: Where the dedup snapshot is persisted
            backoff: Rate-limit backoff controller
            activity_timeout_ms: How long a new heartbeat keeps recording live
            clock: Monotonic clock for the activity window
            now: Wall clock for timestamps shown to the dashboard
        """
        self.fetcher = fetcher
        self.transcript_stream_url = transcript_stream_url
        self.heartbeat_stream_url = heartbeat_stream_url
        self.api_key = api_key
        self.poll_interval_ms = poll_interval_ms
        self.transcript_page_size = transcript_page_size
        self.heartbeat_page_size = heartbeat_page_size

        self.dedup = dedup_store or DedupStore()
        self.state_store: StateStore = state_store or MemoryStateStore()
        self.backoff = backoff or BackoffController()
        self.activity = ActivityWindowTracker(
            timeout_seconds=activity_timeout_ms / 1000,
            clock=clock,
            on_signal=self._on_activity_signal,
        )
        self.status_log = StatusLog(max_lines=status_log_size)
        self._now = now or (lambda: datetime.now(timezone.utc))

        # Output collection, newest first
        self.segments: List[Segment] = []
        self.is_loading = False
        self.needs_api_key = False
        self.last_successful_poll_at: Optional[datetime] = None
        self.last_cycle_added = 0

        self.scheduler = PollScheduler(self.poll_cycle, poll_interval_ms / 1000)
        # Bumped on stop so a cycle suspended across the stop discards its results
        self._generation = 0
        self._state_loaded = False

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        fetcher: EventFetcher,
        state_store: Optional[StateStore] = None,
        sleep: Optional[Sleeper] = None,
    ) -> "TranscriptPoller":
        backoff = BackoffController(
            initial_ms=config.backoff_initial_ms,
            max_ms=config.backoff_max_ms,
            sleep=sleep or asyncio.sleep,
        )
        return cls(
            fetcher=fetcher,
            transcript_stream_url=config.transcript_stream_url,
            heartbeat_stream_url=config.heartbeat_stream_url,
            api_key=config.api_key,
            poll_interval_ms=config.poll_interval_ms,
            transcript_page_size=config.transcript_page_size,
            heartbeat_page_size=config.heartbeat_page_size,
            dedup_store=DedupStore(max_entries=config.dedup_max_entries),
            state_store=state_store,
            backoff=backoff,
            activity_timeout_ms=config.activity_timeout_ms,
            status_log_size=config.status_log_size,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_monitoring(self) -> bool:
        return self.scheduler.is_running

    async def load_state(self) -> None:
        """Restore the dedup snapshot from the state store."""
        try:
            blob = await self.state_store.load()
        except Exception as e:
            logger.error(f"Failed to load processed ids: {e}")
            self.status_log.add("Failed to load processed ids from storage")
            blob = None
        self.dedup.restore(blob)
        self._state_loaded = True
        if blob:
            self.status_log.add(
                f"Loaded {self.dedup.event_count} processed request ids and "
                f"{self.dedup.segment_count} segment ids from storage"
            )

    async def start(self) -> None:
        """Start monitoring: fire a cycle now and then on the configured cadence."""
        if self.is_monitoring:
            logger.warning("Transcript poller is already running")
            return
        if not self._state_loaded:
            await self.load_state()

        # Every start re-establishes the heartbeat baseline
        self.activity.reset()
        self.status_log.add("Started monitoring - heartbeat baseline will be set on first check")
        self.scheduler.start()

    async def stop(self) -> None:
        """Stop monitoring; an in-flight cycle is cancelled and its results discarded."""
        was_running = self.is_monitoring
        self._generation += 1
        await self.scheduler.stop()
        self.activity.reset()
        self.is_loading = False
        await self._persist()
        if was_running:
            self.status_log.add("Stopped monitoring")

    async def close(self) -> None:
        await self.stop()
        try:
            await self.state_store.close()
        except Exception as e:
            logger.error(f"Error closing state store: {e}")

    async def poll_now(self) -> Tuple[bool, int]:
        """Run one cycle immediately. Returns (started, segments added)."""
        task = self.scheduler.fire()
        if task is None:
            return False, 0
        # wait() leaves the cycle running if this caller is cancelled
        await asyncio.wait({task})
        if task.cancelled():
            return True, 0
        return True, self.last_cycle_added

    async def reset(self, clear_segments: bool = False) -> None:
        """Forget every processed id and the heartbeat baseline."""
        self.dedup.reset()
        try:
            await self.state_store.clear()
        except Exception as e:
            logger.error(f"Failed to clear persisted processed ids: {e}")
        self.dedup.dirty = False
        self.activity.reset()
        if clear_segments:
            self.segments = []
        self.status_log.add("Cleared all processed request cache - will fetch fresh data")

        if self.is_monitoring:
            self.scheduler.fire_later(RESET_REPOLL_DELAY_SECONDS)

    def update_config(
        self,
        transcript_stream_url: Optional[str] = None,
        heartbeat_stream_url: Optional[str] = None,
        api_key: Optional[str] = None,
        poll_interval_ms: Optional[int] = None,
    ) -> None:
        """Apply runtime configuration changes from the dashboard."""
        if transcript_stream_url is not None:
            self.transcript_stream_url = transcript_stream_url
        if heartbeat_stream_url is not None and heartbeat_stream_url != self.heartbeat_stream_url:
            self.heartbeat_stream_url = heartbeat_stream_url
            # A different stream has no shared baseline
            self.activity.reset()
        if api_key is not None:
            self.api_key = api_key
            self.needs_api_key = False
        if poll_interval_ms is not None and poll_interval_ms != self.poll_interval_ms:
            if poll_interval_ms < MIN_RECOMMENDED_INTERVAL_MS:
                logger.warning(
                    f"Polling interval {poll_interval_ms}ms is below the recommended "
                    f"{MIN_RECOMMENDED_INTERVAL_MS}ms"
                )
            self.poll_interval_ms = poll_interval_ms
            self.scheduler.reschedule(poll_interval_ms / 1000)

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    async def poll_cycle(self) -> None:
        """One complete poll of both streams."""
        generation = self._generation
        self.last_cycle_added = 0

        stream_url = self.transcript_stream_url.strip()
        if not stream_url:
            self.status_log.add("No transcription stream URL configured")
            return

        await self.backoff.wait()
        if self._is_stale(generation):
            return

        await self.check_activity(generation)
        if self._is_stale(generation):
            return

        self.is_loading = True
        try:
            await self._poll_transcripts(stream_url, generation)
        finally:
            self.is_loading = False

    async def check_activity(self, generation: Optional[int] = None) -> None:
        """Best-effort heartbeat check; failures are logged and never abort the cycle."""
        stream_url = self.heartbeat_stream_url.strip()
        if not stream_url:
            return
        generation = self._generation if generation is None else generation

        try:
            events = await self.fetcher.fetch_events(
                stream_url,
                StreamKind.HEARTBEAT,
                page_size=self.heartbeat_page_size,
                api_key=self.api_key,
            )
        except RateLimited:
            logger.info("Heartbeat check rate limited - skipping this cycle")
            return
        except MonitorError as e:
            logger.warning(f"Heartbeat check failed: {e}")
            return
        except Exception as e:
            logger.error(f"Unexpected heartbeat check error: {e}", exc_info=True)
            return

        if self._is_stale(generation):
            return
        self.activity.check_heartbeat(events[0] if events else None)

    async def _poll_transcripts(self, stream_url: str, generation: int) -> None:
        logger.debug("Fetching transcription data...")
        try:
            events = await self.fetcher.fetch_events(
                stream_url,
                StreamKind.TRANSCRIPT,
                page_size=self.transcript_page_size,
                api_key=self.api_key,
            )
        except RateLimited:
            if self._is_stale(generation):
                return
            delay_ms = self.backoff.on_rate_limited()
            self.status_log.add(f"Rate limited - backing off for {delay_ms / 1000:g}s")
            return
        except AuthRequired as e:
            if self._is_stale(generation):
                return
            self.needs_api_key = True
            self.status_log.add("Authentication required - please add your relay API key")
            logger.warning(f"Transcript fetch needs an API key: {e}")
            return
        except (TransportError, MalformedPayload) as e:
            if self._is_stale(generation):
                return
            self.status_log.add(f"Fetch error: {e}")
            return

        if self._is_stale(generation):
            return

        if self.backoff.on_success():
            self.status_log.add("Rate limit cleared - resuming normal polling")
        self.needs_api_key = False

        if not events:
            self.status_log.add("No new transcription requests found")
        else:
            staged = self.ingest_events(events)
            added = self.merge_segments(staged)
            self.last_cycle_added = added
            if added:
                self.status_log.add(f"Added {added} new transcriptions")

        self.last_successful_poll_at = self._now()
        await self._persist()

    def ingest_events(self, events: List[Event]) -> List[Segment]:
        """Extract segments from unseen events, keeping only unseen segment keys."""
        staged: List[Segment] = []
        for event in events:
            if self.dedup.has_event(event.id):
                continue
            self.dedup.mark_event(event.id)

            try:
                segments = extract_segments(event)
            except MalformedPayload as e:
                logger.warning(f"Failed to parse request {event.id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Unexpected error extracting request {event.id}: {e}", exc_info=True)
                continue

            for segment in segments:
                if self.dedup.has_segment(segment.segment_key):
                    continue
                self.dedup.mark_segment(segment.segment_key)
                staged.append(segment)
        return staged

    def merge_segments(self, staged: List[Segment]) -> int:
        """Merge staged segments into the output collection; returns how many were added."""
        known = {segment.display_tuple() for segment in self.segments}
        fresh: List[Segment] = []
        for segment in staged:
            identity = segment.display_tuple()
            if identity in known:
                continue
            known.add(identity)
            fresh.append(segment)

        if not fresh:
            return 0

        combined = fresh + self.segments
        combined.sort(key=lambda s: s.event_timestamp, reverse=True)
        self.segments = combined
        return len(fresh)

    async def _persist(self) -> None:
        if not self.dedup.dirty:
            return
        try:
            await self.state_store.save(self.dedup.snapshot())
            self.dedup.dirty = False
            logger.debug(
                f"Saved processed ids - requests: {self.dedup.event_count}, "
                f"segments: {self.dedup.segment_count}"
            )
        except Exception as e:
            logger.error(f"Failed to save processed ids: {e}")

    # ------------------------------------------------------------------
    # Signals and views
    # ------------------------------------------------------------------

    def _on_activity_signal(self, signal: ActivitySignal, heartbeat_id: Optional[str]) -> None:
        if signal is ActivitySignal.BASELINE_SET:
            self.status_log.add(f"Set heartbeat baseline: {_short(heartbeat_id)}")
        elif signal is ActivitySignal.STARTED:
            self.status_log.add(f"RECORDING: new heartbeat {_short(heartbeat_id)}")
        else:
            self.status_log.add("Recording stopped - no new heartbeat")

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            is_monitoring=self.is_monitoring,
            is_active=self.activity.is_active,
            is_loading=self.is_loading,
            backoff_delay_ms=self.backoff.current_delay_ms,
            needs_api_key=self.needs_api_key,
            poll_interval_ms=self.poll_interval_ms,
            last_update=self.last_successful_poll_at,
            segment_count=len(self.segments),
            seen_event_count=self.dedup.event_count,
            seen_segment_count=self.dedup.segment_count,
            status_log=self.status_log.lines(),
        )

    def search_segments(self, query: Optional[str] = None) -> List[Segment]:
        """Segments whose text or speaker contains the query (case-insensitive)."""
        if not query:
            return list(self.segments)
        needle = query.lower()
        return [
            s for s in self.segments
            if needle in s.text.lower() or needle in s.speaker.lower()
        ]
