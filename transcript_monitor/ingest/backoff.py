"""
Rate-limit backoff applied before each poll.

The delay doubles on every consecutive rate-limited fetch (starting at the
floor, capped at the ceiling) and drops back to zero on the first fetch that
is not rate limited. It is separate from the polling cadence.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="poller")

Sleeper = Callable[[float], Awaitable[None]]


class BackoffController:
    """Exponential pre-fetch delay driven by rate-limit responses."""

    def __init__(
        self,
        initial_ms: int = 2000,
        max_ms: int = 30000,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.initial_ms = initial_ms
        self.max_ms = max_ms
        self.current_delay_ms = 0
        self._sleep = sleep

    @property
    def is_backing_off(self) -> bool:
        return self.current_delay_ms > 0

    async def wait(self) -> None:
        """Suspend for the current delay, if any."""
        if self.current_delay_ms > 0:
            logger.info(f"Applying backoff delay: {self.current_delay_ms}ms")
            await self._sleep(self.current_delay_ms / 1000)

    def on_rate_limited(self) -> int:
        """Escalate the delay and return the new value in milliseconds."""
        doubled = self.current_delay_ms * 2 or self.initial_ms
        self.current_delay_ms = min(doubled, self.max_ms)
        return self.current_delay_ms

    def on_success(self) -> bool:
        """Reset the delay. Returns True if a backoff was in effect."""
        was_backing_off = self.current_delay_ms > 0
        self.current_delay_ms = 0
        return was_backing_off
