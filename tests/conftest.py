from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from transcript_monitor.ingest.backoff import BackoffController
from transcript_monitor.ingest.poller import TranscriptPoller
from transcript_monitor.memory.state_store import MemoryStateStore
from transcript_monitor.schemas.events import Event, StreamKind

TRANSCRIPT_URL = "https://relay.test/token/transcripts/requests"
HEARTBEAT_URL = "https://relay.test/token/heartbeats/requests"
BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeFetcher:
    """Scripted relay: each call pops the next response for its stream kind.

    A response is a list of Events or an exception instance to raise.
    An exhausted script returns an empty batch.
    """

    def __init__(self):
        self.script: Dict[StreamKind, list] = {
            StreamKind.TRANSCRIPT: [],
            StreamKind.HEARTBEAT: [],
        }
        self.calls: List[tuple] = []

    def queue(self, kind: StreamKind, *responses) -> None:
        self.script[kind].extend(responses)

    async def fetch_events(
        self,
        stream_url: str,
        kind: StreamKind,
        page_size: int = 1,
        api_key: Optional[str] = None,
    ) -> List[Event]:
        self.calls.append((kind, stream_url, page_size, api_key))
        pending = self.script[kind]
        if not pending:
            return []
        response = pending.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_event(
    event_id: str,
    content=None,
    offset_seconds: int = 0,
    kind: StreamKind = StreamKind.TRANSCRIPT,
    method: str = "POST",
) -> Event:
    return Event(
        id=event_id,
        received_at=BASE_TIME + timedelta(seconds=offset_seconds),
        raw_payload=content,
        method=method,
        source_kind=kind,
    )


def make_heartbeat(event_id: str) -> Event:
    return make_event(event_id, content="", kind=StreamKind.HEARTBEAT)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def state_store():
    return MemoryStateStore()


@pytest.fixture
def make_poller(fetcher, state_store, fake_clock, fake_sleep):
    """Factory for pollers wired to the fake relay, clock and sleep."""

    def _make(**overrides) -> TranscriptPoller:
        options = dict(
            fetcher=fetcher,
            transcript_stream_url=TRANSCRIPT_URL,
            heartbeat_stream_url=HEARTBEAT_URL,
            api_key="test-key",
            state_store=state_store,
            backoff=BackoffController(sleep=fake_sleep),
            clock=fake_clock,
        )
        options.update(overrides)
        return TranscriptPoller(**options)

    return _make
