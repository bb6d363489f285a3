"""Unit tests for category-aware logging."""
import logging

import pytest

from transcript_monitor.utils import logging as monitor_logging
from transcript_monitor.utils.logging import CategoryFilter, _parse_categories, get_logger


def _record() -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, "msg", None, None)


@pytest.mark.unit
class TestCategoryLogging:
    def test_parse_categories(self):
        assert _parse_categories(None) is None
        assert _parse_categories(" , ") is None
        assert _parse_categories("Poller, relay") == ["poller", "relay"]

    def test_filter_allows_everything_when_unset(self, monkeypatch):
        monkeypatch.setattr(monitor_logging, "_allowed_categories", None)
        assert CategoryFilter("relay").filter(_record())

    def test_filter_respects_allow_list(self, monkeypatch):
        monkeypatch.setattr(monitor_logging, "_allowed_categories", ["poller"])
        assert CategoryFilter("poller").filter(_record())
        assert not CategoryFilter("relay").filter(_record())
        assert not CategoryFilter().filter(_record())

    def test_get_logger_does_not_stack_filters(self):
        logger = get_logger("transcript_monitor.tests.logging", category="relay")
        logger = get_logger("transcript_monitor.tests.logging", category="storage")
        filters = [f for f in logger.filters if isinstance(f, CategoryFilter)]
        assert len(filters) == 1
        assert filters[0].category == "storage"
