"""Tests for structured logging helpers."""

import logging
import pytest

from taskview.utils.logging import (
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    get_structured_logger,
    log_timing,
    mask_user_id,
    sanitize_search_text,
    timed,
)
from taskview.utils.logging_config import LoggingConfig


@pytest.mark.unit
def test_correlation_context_sets_and_restores():
    """Test correlation id propagation."""
    assert get_correlation_id() is None

    with correlation_context() as outer:
        assert outer.startswith("op_")
        with correlation_context("op_inner") as inner:
            assert get_correlation_id() == inner
        assert get_correlation_id() == outer

    assert get_correlation_id() is None


@pytest.mark.unit
def test_generated_ids_are_unique():
    """Test id generation."""
    assert generate_correlation_id() != generate_correlation_id()


@pytest.mark.unit
def test_mask_user_id(monkeypatch):
    """Test masking of long ids."""
    monkeypatch.setattr(LoggingConfig, "LOG_MASK_SENSITIVE", True)

    masked = mask_user_id("6543210fedcba9876543210f")

    assert masked.startswith("6543...")
    assert len(masked) == len("6543...") + 8
    assert mask_user_id("short") == "short"
    assert mask_user_id(None) is None


@pytest.mark.unit
def test_sanitize_search_text(monkeypatch):
    """Test truncation and e-mail masking of typed search text."""
    monkeypatch.setattr(LoggingConfig, "LOG_SEARCH_TEXT", True)
    monkeypatch.setattr(LoggingConfig, "LOG_MASK_SENSITIVE", True)

    assert sanitize_search_text("ask jane.doe@example.com") == "ask [REDACTED_EMAIL]"
    assert sanitize_search_text("x" * 150, max_length=10) == "x" * 10 + "..."
    assert sanitize_search_text("") is None


@pytest.mark.unit
def test_search_text_logging_disabled(monkeypatch):
    """Test that search text can be kept out of logs entirely."""
    monkeypatch.setattr(LoggingConfig, "LOG_SEARCH_TEXT", False)

    assert sanitize_search_text("secret") is None


@pytest.mark.unit
def test_structured_logger_passes_fields(caplog):
    """Test that keyword arguments become record attributes."""
    logger = get_structured_logger("taskview.test")

    with caplog.at_level(logging.INFO, logger="taskview.test"):
        with correlation_context("op_test"):
            logger.info("Loaded", series_count=3)

    record = caplog.records[-1]
    assert record.series_count == 3
    assert record.correlation_id == "op_test"


@pytest.mark.unit
def test_log_timing_warns_on_slow_operation(monkeypatch, caplog):
    """Test slow operation warning."""
    monkeypatch.setattr(LoggingConfig, "LOG_SLOW_OPERATION_THRESHOLD_MS", -1)
    logger = get_structured_logger("taskview.test")

    with caplog.at_level(logging.DEBUG, logger="taskview.test"):
        with log_timing("fetch", logger=logger, family="recurring"):
            pass

    assert any("Slow operation detected: fetch" in r.getMessage() for r in caplog.records)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timed_decorator_wraps_coroutines():
    """Test that the decorator preserves async behaviour."""
    @timed("double")
    async def double(x):
        return x * 2

    @timed()
    def triple(x):
        return x * 3

    assert await double(2) == 4
    assert triple(2) == 6


@pytest.mark.unit
def test_setup_logging_installs_json_handler(monkeypatch):
    """Test that setup installs one stdout handler and quiets the HTTP stack."""
    from pythonjsonlogger import jsonlogger
    from taskview.utils.logging import setup_logging

    monkeypatch.setattr(LoggingConfig, "LOG_FORMAT", "json")
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        package_logger = setup_logging()

        assert package_logger.name == "taskview"
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, jsonlogger.JsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
