"""Tests for logging configuration."""

import logging

import pytest

from ragkit.logging_config import (
    ColoredFormatter,
    SearchIdFilter,
    clear_search_id,
    get_search_id,
    set_search_id,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg: str = "hello", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("ragkit.test", level, __file__, 1, msg, None, None)


class TestSearchId:
    def test_set_and_clear(self):
        set_search_id("abc12345")
        assert get_search_id() == "abc12345"

        clear_search_id()
        assert get_search_id() is None

    def test_filter_adds_search_id(self):
        record = make_record()
        set_search_id("feedbeef")
        try:
            assert SearchIdFilter().filter(record)
        finally:
            clear_search_id()

        assert record.search_id == "feedbeef"

    def test_filter_default(self):
        record = make_record()

        SearchIdFilter().filter(record)

        assert record.search_id == "N/A"


class TestSetupLogging:
    def test_configures_root_logger(self, restore_root_logger):
        setup_logging("debug")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        handler = restore_root_logger.handlers[0]
        assert any(isinstance(f, SearchIdFilter) for f in handler.filters)
        assert logging.getLogger("asyncio").level == logging.WARNING
        assert logging.getLogger("sentence_transformers").level == logging.WARNING

    def test_level_from_settings(self, restore_root_logger, monkeypatch, test_settings):
        monkeypatch.setattr(
            "ragkit.logging_config.get_settings",
            lambda: test_settings.model_copy(update={"log_level": "ERROR"}),
        )

        setup_logging()

        assert restore_root_logger.level == logging.ERROR


class TestColoredFormatter:
    def test_colors_level_and_restores_record(self):
        formatter = ColoredFormatter("%(levelname)s %(message)s")
        record = make_record(level=logging.WARNING)
        record.levelname = "WARNING"

        output = formatter.format(record)

        assert output.startswith("\033[33mWARNING\033[0m")
        assert record.levelname == "WARNING"
