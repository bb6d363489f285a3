"""
Recording Activity Detection

The heartbeat stream receives a request each time the recording device ships
audio bytes. A heartbeat id we have not seen before means the device is
streaming; no new id within the timeout means it stopped. The first heartbeat
after a (re)start or reset only seeds the comparison.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from transcript_monitor.schemas.events import Event
from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="activity")

Clock = Callable[[], float]


class ActivitySignal(str, Enum):
    BASELINE_SET = "baseline_set"
    STARTED = "started"
    STOPPED = "stopped"


@dataclass
class ActivityState:
    last_heartbeat_event_id: Optional[str] = None
    is_active: bool = False
    window_deadline: Optional[float] = None  # clock() value, seconds


class ActivityWindowTracker:
    """Converts heartbeat deliveries into a live/not-live flag with a trailing timeout."""

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        clock: Clock = time.monotonic,
        on_signal: Optional[Callable[[ActivitySignal, Optional[str]], None]] = None,
    ):
        """
        Args:
            timeout_seconds: How long a new heartbeat keeps activity live
            clock: Monotonic time source in seconds (injectable for tests)
            on_signal: Callback receiving (signal, heartbeat_id) on every transition
        """
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.on_signal = on_signal
        self.state = ActivityState()
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    def check_heartbeat(self, latest: Optional[Event]) -> None:
        """Update activity from the newest heartbeat of the current fetch (None if empty)."""
        self.expire_if_due()

        if latest is None:
            if self.state.is_active:
                logger.info("No heartbeat requests - recording stopped")
                self._stop()
            else:
                logger.debug("No heartbeat requests found")
            return

        if self.state.last_heartbeat_event_id is None:
            self.state.last_heartbeat_event_id = latest.id
            logger.info(f"Set heartbeat baseline: {latest.id}")
            self._emit(ActivitySignal.BASELINE_SET, latest.id)
            return

        if latest.id == self.state.last_heartbeat_event_id:
            logger.debug(f"Same heartbeat id - no new activity: {latest.id}")
            return

        self.state.last_heartbeat_event_id = latest.id
        was_active = self.state.is_active
        self.state.is_active = True
        self._arm_deadline()
        if not was_active:
            logger.info(f"New heartbeat {latest.id} - recording started")
        else:
            logger.debug(f"New heartbeat {latest.id} - recording window extended")
        self._emit(ActivitySignal.STARTED, latest.id)

    def expire_if_due(self) -> bool:
        """Stop activity if the deadline has passed on the tracker's clock."""
        deadline = self.state.window_deadline
        if self.state.is_active and deadline is not None and self.clock() >= deadline:
            logger.info(
                f"No new heartbeat for {self.timeout_seconds:g}s - recording stopped"
            )
            self._stop()
            return True
        return False

    def reset(self) -> None:
        """Forget the baseline and go inactive without emitting a signal."""
        self.cancel()
        self.state = ActivityState()

    def cancel(self) -> None:
        """Cancel the pending deadline timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state.window_deadline = None

    def _arm_deadline(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state.window_deadline = self.clock() + self.timeout_seconds
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (synchronous caller): the deadline is enforced on the next check
            return
        self._timer = loop.call_later(self.timeout_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self.state.is_active:
            logger.info(
                f"No new heartbeat for {self.timeout_seconds:g}s - recording stopped"
            )
            self._stop()

    def _stop(self) -> None:
        self.cancel()
        self.state.is_active = False
        self._emit(ActivitySignal.STOPPED, self.state.last_heartbeat_event_id)

    def _emit(self, signal: ActivitySignal, heartbeat_id: Optional[str]) -> None:
        if self.on_signal is None:
            return
        try:
            self.on_signal(signal, heartbeat_id)
        except Exception as e:
            logger.error(f"Activity signal handler failed for {signal.value}: {e}")
