"""
Bounded status feed shown to the dashboard.

Newest line first, each prefixed with the local wall-clock time.
"""

from collections import deque
from datetime import datetime
from typing import Callable, List, Optional

from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="poller")


class StatusLog:
    def __init__(self, max_lines: int = 10, now: Optional[Callable[[], datetime]] = None):
        self._lines: deque = deque(maxlen=max_lines)
        self._now = now or datetime.now

    def add(self, message: str) -> str:
        line = f"[{self._now().strftime('%H:%M:%S')}] {message}"
        self._lines.appendleft(line)
        logger.info(message)
        return line

    def lines(self) -> List[str]:
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)
