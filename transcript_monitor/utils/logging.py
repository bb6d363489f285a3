"""
Category-aware logging utility for the transcript monitor

Every module asks for its logger through `get_logger(__name__, category=...)`.
The category says which part of the monitor emitted the record:

    poller    poll cycles, scheduling, backoff
    activity  heartbeat baseline and recording window
    relay     HTTP calls to the webhook relay
    storage   dedup bookkeeping and persisted state
    system    service startup, shutdown and HTTP endpoints (default)

LOG_CATEGORIES (comma separated) limits output to the listed categories;
unset means everything is shown. LOG_LEVEL accepts DEBUG, INFO, WARN, ERROR.

Usage:
    from transcript_monitor.utils.logging import get_logger

    logger = get_logger(__name__, category='relay')
    logger.info('Fetched 1 transcription request')
"""

import logging
from typing import List, Optional

from transcript_monitor.config import settings


# Log level hierarchy (lower number = more verbose)
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_CATEGORY = "system"


def _parse_categories(raw: Optional[str]) -> Optional[List[str]]:
    """Split LOG_CATEGORIES into lowercase names; None when unset or blank."""
    if not raw:
        return None
    categories = [cat.strip().lower() for cat in raw.split(",") if cat.strip()]
    return categories or None


def _resolve_level(name: Optional[str]) -> int:
    return LOG_LEVELS.get((name or "").upper(), logging.INFO)


# If not set, show all categories (default behavior)
_allowed_categories = _parse_categories(settings.log_categories)


class CategoryFilter(logging.Filter):
    """Filter logs by category if LOG_CATEGORIES is set."""

    def __init__(self, category: Optional[str] = None):
        """
        Initialize category filter.

        Args:
            category: Monitor area this logger belongs to ('poller', 'relay', ...)
        """
        super().__init__()
        self.category = category.lower() if category else DEFAULT_CATEGORY

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Decide whether a record passes the category allow-list.

        Args:
            record: Log record to filter

        Returns:
            True if record should be logged, False otherwise
        """
        if _allowed_categories is None:
            return True
        return self.category in _allowed_categories


def configure_logging(level: Optional[str] = None) -> None:
    """
    Install the root handler for the service process.

    Called once from the FastAPI startup path; uvicorn installs its own
    handlers for its access log, so only the root logger is touched here.

    Args:
        level: Overrides LOG_LEVEL when given
    """
    logging.basicConfig(
        level=_resolve_level(level or settings.log_level),
        format=LOG_FORMAT,
    )


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with category filtering support.

    Args:
        name: Logger name (typically __name__)
        category: Category for filtering (e.g., 'poller', 'activity', 'relay')
                  If None, defaults to 'system'

    Returns:
        Logger instance with category filter applied
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(settings.log_level))

    # Remove existing category filters to avoid duplicates
    logger.filters = [f for f in logger.filters if not isinstance(f, CategoryFilter)]
    logger.addFilter(CategoryFilter(category))

    return logger
