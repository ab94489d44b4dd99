"""
Structured JSON logging for the engine.

Two context variables ride along with every log line:
- the request correlation id, set by the API middleware
- booking fields (booking_id, operation, ...) bound by the lifecycle
  for the duration of one mutation

Both are copied onto the bounded store's worker threads, so a store
timeout logged there still names the request and the booking it served.
"""
import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from booking_engine.lib.settings import settings


correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
booking_context_var: ContextVar[Dict[str, Any]] = ContextVar("booking_context", default={})


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context fields first, call-site fields last."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id
        log_data.update(booking_context_var.get())

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        # UUIDs, enums and datetimes are rendered with str()
        return json.dumps(log_data, default=str)


def setup_logging(level: Optional[str] = None, json_format: Optional[bool] = None) -> None:
    """
    Configure the root logger from arguments or settings.

    Args:
        level: Log level name; falls back to settings.log_level, then DEBUG/INFO by settings.debug
        json_format: JSON lines when True, plain text otherwise; falls back to settings.log_json
    """
    level = level or settings.log_level or ("DEBUG" if settings.debug else "INFO")
    json_format = settings.log_json if json_format is None else json_format
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Provider SDKs and the scheduler log every call at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("twilio.http_client").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


@contextmanager
def booking_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """
    Bind booking fields to every log line emitted inside the block.

    Nested blocks add to the outer fields; None values are skipped.
    """
    merged = {**booking_context_var.get(), **{k: str(v) for k, v in fields.items() if v is not None}}
    token = booking_context_var.set(merged)
    try:
        yield merged
    finally:
        booking_context_var.reset(token)


def log_with_context(logger: logging.Logger, level: str, message: str, **extra_fields) -> None:
    """
    Log a message with structured fields; fields whose value is None are left out.
    """
    log_func = getattr(logger, level.lower())
    log_func(message, extra={"extra_fields": {k: v for k, v in extra_fields.items() if v is not None}})


setup_logging()
