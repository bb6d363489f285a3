"""Unit tests for ActivityWindowTracker."""
import asyncio

import pytest

from conftest import make_heartbeat
from transcript_monitor.ingest.activity import ActivitySignal, ActivityWindowTracker


class SignalRecorder:
    def __init__(self):
        self.signals = []

    def __call__(self, signal, heartbeat_id):
        self.signals.append((signal, heartbeat_id))

    @property
    def kinds(self):
        return [signal for signal, _ in self.signals]


@pytest.fixture
def recorder():
    return SignalRecorder()


@pytest.fixture
def tracker(fake_clock, recorder):
    return ActivityWindowTracker(timeout_seconds=5.0, clock=fake_clock, on_signal=recorder)


@pytest.mark.unit
class TestActivityWindowTracker:
    def test_first_heartbeat_sets_baseline_only(self, tracker, recorder):
        tracker.check_heartbeat(make_heartbeat("A"))
        assert tracker.state.last_heartbeat_event_id == "A"
        assert tracker.is_active is False
        assert tracker.state.window_deadline is None
        assert recorder.kinds == [ActivitySignal.BASELINE_SET]

    def test_second_distinct_heartbeat_starts_activity(self, tracker, recorder, fake_clock):
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        assert tracker.is_active is True
        assert tracker.state.last_heartbeat_event_id == "B"
        assert tracker.state.window_deadline == fake_clock.now + 5.0
        assert recorder.kinds == [ActivitySignal.BASELINE_SET, ActivitySignal.STARTED]

    def test_same_id_does_not_extend_deadline(self, tracker, recorder, fake_clock):
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        deadline = tracker.state.window_deadline

        fake_clock.advance(3)
        tracker.check_heartbeat(make_heartbeat("B"))
        assert tracker.state.window_deadline == deadline
        assert len(recorder.signals) == 2

        fake_clock.advance(2)
        tracker.check_heartbeat(make_heartbeat("B"))
        assert tracker.is_active is False

    def test_new_id_rearms_deadline(self, tracker, fake_clock):
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        fake_clock.advance(4)
        tracker.check_heartbeat(make_heartbeat("C"))
        fake_clock.advance(4)
        assert tracker.expire_if_due() is False
        assert tracker.is_active is True

    def test_timeout_stops_exactly_once(self, tracker, recorder, fake_clock):
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))

        fake_clock.advance(5.0)
        assert tracker.expire_if_due() is True
        assert tracker.is_active is False

        # Nothing arriving afterwards must not repeat the stop signal
        assert tracker.expire_if_due() is False
        tracker.check_heartbeat(None)
        fake_clock.advance(10)
        tracker.check_heartbeat(None)
        assert recorder.kinds.count(ActivitySignal.STOPPED) == 1

    def test_empty_fetch_stops_active_window_immediately(self, tracker, recorder):
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        tracker.check_heartbeat(None)
        assert tracker.is_active is False
        assert tracker.state.window_deadline is None
        assert recorder.kinds[-1] is ActivitySignal.STOPPED

    def test_empty_fetch_while_inactive_is_silent(self, tracker, recorder):
        tracker.check_heartbeat(None)
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(None)
        assert recorder.kinds == [ActivitySignal.BASELINE_SET]

    def test_reset_requires_new_baseline(self, tracker, recorder):
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        tracker.reset()
        assert tracker.is_active is False
        assert tracker.state.last_heartbeat_event_id is None

        tracker.check_heartbeat(make_heartbeat("C"))
        assert tracker.is_active is False
        assert recorder.kinds[-1] is ActivitySignal.BASELINE_SET

    def test_failing_signal_handler_does_not_break_tracking(self, fake_clock):
        def explode(signal, heartbeat_id):
            raise RuntimeError("boom")

        tracker = ActivityWindowTracker(clock=fake_clock, on_signal=explode)
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        assert tracker.is_active is True


@pytest.mark.unit
@pytest.mark.asyncio
class TestActivityTimer:
    async def test_timer_fires_after_timeout(self, recorder):
        tracker = ActivityWindowTracker(timeout_seconds=0.05, on_signal=recorder)
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        assert tracker.is_active

        await asyncio.sleep(0.15)
        assert tracker.is_active is False
        assert recorder.kinds.count(ActivitySignal.STOPPED) == 1

    async def test_cancel_prevents_timer(self, recorder):
        tracker = ActivityWindowTracker(timeout_seconds=0.05, on_signal=recorder)
        tracker.check_heartbeat(make_heartbeat("A"))
        tracker.check_heartbeat(make_heartbeat("B"))
        tracker.cancel()

        await asyncio.sleep(0.15)
        assert tracker.is_active is True
        assert ActivitySignal.STOPPED not in recorder.kinds
