"""
Recurring poll scheduler.

Fires a cycle immediately on start and then on a fixed cadence. Each firing
runs as its own task so a slow cycle never delays the timer; a firing that
lands while a cycle is still in flight is dropped.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="poller")

Cycle = Callable[[], Awaitable[None]]


class PollScheduler:
    """Start/stop/reschedule timer with an in-flight guard."""

    def __init__(self, cycle: Cycle, interval_seconds: float):
        self.cycle = cycle
        self.interval_seconds = interval_seconds
        self.is_running = False
        self.in_flight = False
        self.skipped_firings = 0
        self._ticker: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self._delayed: set = set()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Poll scheduler is already running")
            return
        self.is_running = True
        self._ticker = asyncio.create_task(self._tick_loop(fire_immediately=True))

    async def stop(self) -> None:
        """Stop the timer and cancel the in-flight cycle and any delayed firing."""
        self.is_running = False
        tasks = [t for t in (self._ticker, self._current, *self._delayed) if t is not None]
        self._ticker = None
        self._delayed.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                # Cancellation is expected when stopping the scheduler
                pass

    def reschedule(self, interval_seconds: float) -> None:
        """Change the cadence; the next firing comes one new interval from now."""
        self.interval_seconds = interval_seconds
        if not self.is_running:
            return
        if self._ticker is not None:
            self._ticker.cancel()
        self._ticker = asyncio.create_task(self._tick_loop(fire_immediately=False))
        logger.info(f"Polling interval changed to {interval_seconds:g}s")

    def fire(self) -> Optional[asyncio.Task]:
        """Run one cycle now unless one is already in flight."""
        if self.in_flight:
            self.skipped_firings += 1
            logger.debug("Previous poll still in flight - skipping this firing")
            return None
        self.in_flight = True
        task = asyncio.create_task(self._run_cycle())
        # A task cancelled before its first step never enters _run_cycle
        task.add_done_callback(self._on_cycle_done)
        self._current = task
        return task

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        if self._current is task:
            self._current = None
            self.in_flight = False

    def fire_later(self, delay_seconds: float) -> None:
        """Fire once after a delay, if still running by then."""
        task = asyncio.create_task(self._fire_after(delay_seconds))
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def _fire_after(self, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        if self.is_running:
            self.fire()

    async def _run_cycle(self) -> None:
        try:
            await self.cycle()
        except Exception as e:
            logger.error(f"Unhandled error in poll cycle: {e}", exc_info=True)

    async def _tick_loop(self, fire_immediately: bool) -> None:
        try:
            if fire_immediately:
                self.fire()
            while self.is_running:
                await asyncio.sleep(self.interval_seconds)
                if self.is_running:
                    self.fire()
        except asyncio.CancelledError:
            logger.debug("Poll timer cancelled")
            raise
