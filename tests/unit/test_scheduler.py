"""Unit tests for PollScheduler."""
import asyncio

import pytest

from transcript_monitor.ingest.scheduler import PollScheduler


class CountingCycle:
    def __init__(self, duration: float = 0.0):
        self.duration = duration
        self.runs = 0
        self.active = 0
        self.max_active = 0

    async def __call__(self):
        self.runs += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.duration)
        finally:
            self.active -= 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestPollScheduler:
    async def test_fires_immediately_then_on_cadence(self):
        cycle = CountingCycle()
        scheduler = PollScheduler(cycle, interval_seconds=0.05)
        scheduler.start()
        await asyncio.sleep(0.01)
        assert cycle.runs == 1

        await asyncio.sleep(0.15)
        await scheduler.stop()
        assert cycle.runs >= 3

    async def test_overlapping_firings_are_dropped(self):
        cycle = CountingCycle(duration=0.2)
        scheduler = PollScheduler(cycle, interval_seconds=0.03)
        scheduler.start()
        await asyncio.sleep(0.15)
        await scheduler.stop()

        assert cycle.runs == 1
        assert cycle.max_active == 1
        assert scheduler.skipped_firings >= 1

    async def test_manual_fire_respects_in_flight_guard(self):
        cycle = CountingCycle(duration=0.05)
        scheduler = PollScheduler(cycle, interval_seconds=10)
        first = scheduler.fire()
        assert first is not None
        assert scheduler.fire() is None
        await first
        assert scheduler.in_flight is False
        assert scheduler.fire() is not None
        await scheduler.stop()

    async def test_stop_cancels_in_flight_cycle(self):
        cycle = CountingCycle(duration=1.0)
        scheduler = PollScheduler(cycle, interval_seconds=10)
        scheduler.start()
        await asyncio.sleep(0.01)
        assert scheduler.in_flight

        await scheduler.stop()
        assert scheduler.is_running is False
        assert scheduler.in_flight is False
        assert cycle.active == 0

    async def test_reschedule_keeps_in_flight_cycle(self):
        cycle = CountingCycle(duration=0.1)
        scheduler = PollScheduler(cycle, interval_seconds=10)
        scheduler.start()
        await asyncio.sleep(0.01)
        in_flight = scheduler._current

        scheduler.reschedule(0.05)
        assert not in_flight.cancelled()
        await in_flight
        await asyncio.sleep(0.08)
        await scheduler.stop()
        assert cycle.runs >= 2

    async def test_cycle_errors_do_not_stop_schedule(self):
        calls = []

        async def failing():
            calls.append(1)
            raise RuntimeError("boom")

        scheduler = PollScheduler(failing, interval_seconds=0.02)
        scheduler.start()
        await asyncio.sleep(0.07)
        await scheduler.stop()
        assert len(calls) >= 2

    async def test_fire_later_skipped_after_stop(self):
        cycle = CountingCycle()
        scheduler = PollScheduler(cycle, interval_seconds=10)
        scheduler.start()
        await asyncio.sleep(0.01)
        scheduler.fire_later(0.05)
        await scheduler.stop()
        await asyncio.sleep(0.08)
        assert cycle.runs == 1

    async def test_stop_before_cycle_starts_releases_guard(self):
        cycle = CountingCycle()
        scheduler = PollScheduler(cycle, interval_seconds=10)
        pending = scheduler.fire()
        await scheduler.stop()

        assert pending.cancelled()
        assert cycle.runs == 0
        assert scheduler.in_flight is False
        assert scheduler.fire() is not None
        await asyncio.sleep(0.01)
        assert cycle.runs == 1

    async def test_restart_after_immediate_stop_keeps_polling(self):
        cycle = CountingCycle()
        scheduler = PollScheduler(cycle, interval_seconds=0.05)
        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()

        scheduler.start()
        await asyncio.sleep(0.12)
        await scheduler.stop()
        assert cycle.runs >= 2
        assert scheduler.in_flight is False
