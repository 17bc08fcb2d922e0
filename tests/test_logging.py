"""Tests for logging helpers"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler

import pytest

from named_lock.core.logging import (
    ContextLoggerAdapter,
    JSONFormatter,
    flush_logging_handlers,
    setup_logging,
    with_log_context,
)


@pytest.fixture
def restore_root_logging():
    """Put back whatever handlers the root logger had before the test"""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def _record(msg="Acquired lock %s", args=("job-x",), **extra) -> logging.LogRecord:
    record = logging.LogRecord("named_lock.test", logging.INFO, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_core_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "named_lock.test"
        assert entry["message"] == "Acquired lock job-x"
        assert entry["line"] == 10
        assert "timestamp" in entry

    def test_extra_fields_are_top_level(self):
        entry = json.loads(JSONFormatter().format(_record(lock_name="job-x", owner_pid=4242)))

        assert entry["lock_name"] == "job-x"
        assert entry["owner_pid"] == 4242

    def test_private_fields_are_skipped(self):
        entry = json.loads(JSONFormatter().format(_record(_internal="hidden")))
        assert "_internal" not in entry

    def test_bad_placeholder_does_not_raise(self):
        entry = json.loads(JSONFormatter().format(_record("held by %d", ("not-a-number",))))
        assert entry["message"].endswith("[log-message-format-error]")

    def test_exception_included(self):
        try:
            raise RuntimeError("store down")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: store down" in entry["exception"]


class TestWithLogContext:
    def test_context_reaches_records(self, caplog):
        logger = logging.getLogger("named_lock.test.context")
        adapter = with_log_context(logger, lock_name="job-x", owner_pid=None)

        with caplog.at_level(logging.INFO, logger="named_lock.test.context"):
            adapter.info("Broke stale claim", extra={"owner_pid": 7})

        record = caplog.records[-1]
        assert record.lock_name == "job-x"
        assert record.owner_pid == 7

    def test_nested_context_merges(self):
        logger = logging.getLogger("named_lock.test.context")
        outer = with_log_context(logger, lock_name="job-x", backend="sql")
        inner = with_log_context(outer, lock_name="job-y")

        assert isinstance(inner, ContextLoggerAdapter)
        assert inner.logger is logger
        assert inner.extra == {"lock_name": "job-y", "backend": "sql"}


class TestSetupLogging:
    def test_text_logging_to_stderr(self, restore_root_logging):
        logger = setup_logging("debug")

        assert logger.name == "named_lock"
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_json_format(self, restore_root_logging):
        setup_logging("INFO", log_format="json")
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_invalid_level_falls_back_to_info(self, restore_root_logging, capsys):
        setup_logging("chatty")

        assert logging.getLogger().level == logging.INFO
        assert "Invalid log level 'chatty'" in capsys.readouterr().err

    def test_level_from_environment(self, restore_root_logging, monkeypatch):
        monkeypatch.setenv("NAMED_LOCK_LOG_LEVEL", "ERROR")
        setup_logging()
        assert logging.getLogger().level == logging.ERROR

    def test_log_file(self, restore_root_logging, tmp_path):
        log_path = tmp_path / "logs" / "named-lock.log"
        logger = setup_logging("INFO", log_file=log_path)

        logger.info("hello from the test")
        flush_logging_handlers(logger)

        assert any(isinstance(h, RotatingFileHandler) for h in logging.getLogger().handlers)
        assert "hello from the test" in log_path.read_text()
