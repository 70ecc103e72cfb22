"""Tests for logging configuration and formatters."""

import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from talentmatch.logging import ComponentLoggerAdapter, get_logger
from talentmatch.logging.config import (
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from talentmatch.logging.context import clear_log_context, log_context


@pytest.fixture(autouse=True)
def clean_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def logger():
    """Create a test logger with no handlers attached."""
    test_logger = logging.getLogger("talentmatch.test")
    test_logger.setLevel(logging.DEBUG)
    test_logger.handlers.clear()

    yield test_logger

    test_logger.handlers.clear()


@pytest.fixture
def restore_root_logger():
    """Restore root handlers and level after configure_logging tests."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(logger, message="Score stored", extra=None):
    return logger.makeRecord("talentmatch.test", logging.INFO, "test.py", 1, message, (), None, extra=extra)


def test_json_formatter_basic(logger):
    """Test JSONFormatter produces valid JSON with mandatory fields."""
    log_obj = json.loads(JSONFormatter().format(_record(logger)))

    assert log_obj["level"] == "INFO"
    assert log_obj["message"] == "Score stored"
    assert log_obj["logger"] == "talentmatch.test"
    assert "timestamp" in log_obj


def test_json_formatter_with_extra_fields(logger):
    """Test JSONFormatter includes extra fields with their JSON types."""
    record = _record(
        logger,
        extra={"event": "score.stored", "composite_score": 67, "written": True, "error": None},
    )
    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["event"] == "score.stored"
    assert log_obj["composite_score"] == 67
    assert log_obj["written"] is True
    assert log_obj["error"] is None


def test_json_formatter_serializes_datetimes_and_objects(logger):
    """Test datetimes become ISO strings and unknown objects become str()."""
    when = datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)
    record = _record(logger, extra={"next_attempt_at": when, "pair": ("stu-1", "lst-1")})
    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["next_attempt_at"] == "2025-11-04T12:00:00+00:00"
    assert log_obj["pair"] == "('stu-1', 'lst-1')"


def test_json_formatter_includes_exception(logger):
    """Test exc_info is rendered into the JSON object."""
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logger.makeRecord(
            "talentmatch.test", logging.ERROR, "test.py", 1, "failed", (), sys.exc_info()
        )

    log_obj = json.loads(JSONFormatter().format(record))

    assert "RuntimeError: boom" in log_obj["exc_info"]


def test_timestamp_format_in_json(logger):
    """Test that JSON timestamps are ISO-8601 UTC with millisecond precision."""
    timestamp = json.loads(JSONFormatter().format(_record(logger)))["timestamp"]

    assert timestamp.endswith("Z")
    assert len(timestamp) == 24  # 2025-11-04T10:30:00.123Z


def test_contextual_filter_adds_static_fields(logger):
    """Test ContextualFilter adds service and environment fields."""
    record = _record(logger)
    assert ContextualFilter(service="talentmatch", environment="test").filter(record) is True

    assert record.service == "talentmatch"
    assert record.environment == "test"


def test_contextual_filter_adds_context_fields(logger):
    """Test ContextualFilter copies the active log context onto records."""
    with log_context(worker_run_id="run-1", entry_id=12):
        record = _record(logger)
        ContextualFilter().filter(record)

    assert record.worker_run_id == "run-1"
    assert record.entry_id == 12


def test_explicit_extra_wins_over_context(logger):
    """Test that fields passed on the log call are not overwritten by context."""
    with log_context(student_id="from-context"):
        record = _record(logger, extra={"student_id": "explicit"})
        ContextualFilter().filter(record)

    assert record.student_id == "explicit"


def test_key_value_formatter_with_extras(logger):
    """Test KeyValueFormatter renders extras as sorted key=value pairs."""
    formatter = KeyValueFormatter("[%(levelname)s] %(name)s: %(message)s")
    record = _record(
        logger,
        extra={"event": "queue.entry.dropped", "reason": "unknown listing", "written": False},
    )

    output = formatter.format(record)

    assert output.startswith("[INFO] talentmatch.test: Score stored")
    assert 'event=queue.entry.dropped reason="unknown listing" written=false' in output


def test_key_value_formatter_skips_service_fields(logger):
    """Test service and environment are left out of the human-readable form."""
    formatter = KeyValueFormatter("%(message)s")
    record = _record(logger)
    ContextualFilter(environment="test").filter(record)

    assert formatter.format(record) == "Score stored"


def test_component_adapter_merges_component(logger):
    """Test get_logger(component=...) tags records and lets the call override."""
    adapter = get_logger("talentmatch.test", component="worker")
    assert isinstance(adapter, ComponentLoggerAdapter)

    msg, kwargs = adapter.process("hello", {"extra": {"event": "x"}})
    assert kwargs["extra"] == {"component": "worker", "event": "x"}

    _, kwargs = adapter.process("hello", {"extra": {"component": "override"}})
    assert kwargs["extra"]["component"] == "override"


def test_get_logger_without_component():
    assert isinstance(get_logger("talentmatch.test"), logging.Logger)


def test_configure_logging_invalid_level():
    """Test configure_logging rejects invalid log level."""
    with pytest.raises(ValueError, match="Invalid log level"):
        configure_logging(level="INVALID")


def test_configure_logging_invalid_format():
    """Test configure_logging rejects invalid format type."""
    with pytest.raises(ValueError, match="Invalid log format"):
        configure_logging(format_type="invalid")


@pytest.mark.parametrize(
    "format_type,formatter_class",
    [("json", JSONFormatter), ("key-value", KeyValueFormatter)],
)
def test_configure_logging_installs_formatter(restore_root_logger, format_type, formatter_class):
    """Test configure_logging installs one handler with the chosen formatter."""
    configure_logging(level="DEBUG", format_type=format_type, environment="test")

    root_logger = logging.getLogger()
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, formatter_class)
    assert root_logger.level == logging.DEBUG


def test_configure_logging_quiets_apscheduler(restore_root_logger):
    """Test APScheduler job chatter is held at WARNING or above."""
    configure_logging(level="DEBUG", format_type="json")

    assert logging.getLogger("apscheduler").level == logging.WARNING
