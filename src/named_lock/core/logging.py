"""Logging helpers for named-lock."""

import atexit
import contextlib
import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from named_lock.core.constants import (
    ENV_VAR_MAPPING,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    VALID_LOG_LEVELS,
)

_LOG_RECORD_RESERVED_FIELDS = set(logging.makeLogRecord({}).__dict__.keys()) | {"message", "asctime", "extra_fields"}
_TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _safe_str(value: object) -> str:
    try:
        return str(value)
    except Exception:
        return "<unprintable>"


def _safe_record_message(record: logging.LogRecord) -> str:
    try:
        return record.getMessage()
    except Exception:
        # A bad placeholder must not take down the caller that was logging.
        return f"{_safe_str(getattr(record, 'msg', ''))} [log-message-format-error]"


def _is_reserved_or_private_record_key(key: object) -> bool:
    if not isinstance(key, str):
        return True
    return key in _LOG_RECORD_RESERVED_FIELDS or key.startswith("_")


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging output.

    Each log record is a single JSON object on one line. Context attached
    with `with_log_context` (lock name, owner pid, ...) appears as top-level
    keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _safe_record_message(record),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
            "thread_name": record.threadName,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {}
        record_extra_fields = getattr(record, "extra_fields", None)
        if isinstance(record_extra_fields, dict):
            extra_fields.update(record_extra_fields)

        for key, value in record.__dict__.items():
            if _is_reserved_or_private_record_key(key):
                continue
            extra_fields.setdefault(key, value)

        log_entry.update(extra_fields)
        return json.dumps(log_entry, default=str)


_atexit_registered = False


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges contextual fields into record extras."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        merged_extra = dict(self.extra)
        extra = kwargs.get("extra")
        if isinstance(extra, dict):
            merged_extra.update(extra)
        kwargs["extra"] = merged_extra
        return msg, kwargs


def _unwrap_logger(logger: logging.Logger | logging.LoggerAdapter | None) -> logging.Logger | None:
    current = logger
    while isinstance(current, logging.LoggerAdapter):
        current = current.logger
    if isinstance(current, logging.Logger):
        return current
    return None


def with_log_context(
    logger: logging.Logger | logging.LoggerAdapter, **context: object
) -> logging.Logger | logging.LoggerAdapter:
    """Return a logger that attaches `context` to every record it emits.

    Context already carried by an adapter is kept; new keys win. None
    values are dropped.
    """
    base_logger = _unwrap_logger(logger)
    if base_logger is None:
        return logger

    merged: dict[str, object] = {}
    if isinstance(logger, logging.LoggerAdapter):
        merged.update(getattr(logger, "extra", None) or {})
    merged.update({k: v for k, v in context.items() if v is not None})
    return ContextLoggerAdapter(base_logger, merged)


def flush_logging_handlers(logger: logging.Logger | logging.LoggerAdapter | None = None) -> None:
    """Flush the handlers a record from `logger` would reach, or the root handlers."""
    handlers: list[logging.Handler] = []
    current = _unwrap_logger(logger)
    while current is not None:
        handlers.extend(current.handlers)
        if not current.propagate:
            break
        current = current.parent

    if not handlers:
        handlers.extend(logging.root.handlers)

    seen: set[int] = set()
    for handler in handlers:
        if id(handler) in seen:
            continue
        seen.add(id(handler))
        with contextlib.suppress(Exception):
            handler.flush()


def setup_logging(
    log_level: str | None = None,
    log_format: str = "text",
    log_file: str | Path | None = None,
) -> logging.Logger:
    """Configure root logging for the named-lock CLI.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format - "text" (default) or "json" for structured logging
        log_file: Optional file that receives the same records, rotated by size

    Returns:
        The package logger

    Priority: 1) Passed parameter, 2) Environment variable NAMED_LOCK_LOG_LEVEL, 3) Default INFO
    """
    global _atexit_registered

    if not _atexit_registered:
        atexit.register(logging.shutdown)
        _atexit_registered = True

    if log_level is None:
        log_level = os.environ.get(ENV_VAR_MAPPING["log_level"], "INFO")
    if log_level.upper() not in VALID_LOG_LEVELS:
        print(f"Warning: Invalid log level '{log_level}', using INFO", file=sys.stderr)
        log_level = "INFO"
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    for handler in logging.root.handlers[:]:
        handler.close()
        logging.root.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(log_path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT)
            )
        except OSError as e:
            print(f"Warning: Cannot open log file {log_path}: {e}. Logging to console only.", file=sys.stderr)

    if log_format.lower() == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(numeric_level)
        logging.root.addHandler(handler)
    logging.root.setLevel(numeric_level)

    logger = logging.getLogger("named_lock")
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logger.debug("Logging initialized at %s", log_level.upper())
    return logger
