"""Logging utilities for classroom-rag.

Records are emitted as one JSON object per line. Structured fields travel in
``extra`` as ``ctx_*`` attributes (see :func:`log_context`); fields bound with
:func:`request_context` are added to every record logged while it is active,
so each line of a request carries its request id and account.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import orjson

_DEFAULT_LEVEL = os.environ.get("CRAG_LOG_LEVEL", "INFO")

# Client libraries that log every HTTP round trip at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")

_REQUEST_FIELDS: ContextVar[dict[str, Any]] = ContextVar("crag_request_fields", default={})


class JsonFormatter(logging.Formatter):
    """JSON log formatter; ``ctx_*`` record attributes become fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in _REQUEST_FIELDS.get().items():
            payload[f"ctx_{key}"] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                payload[key] = value
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Configure root logger with optional JSON formatting."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "classroom_rag") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping whose keys are emitted as ``ctx_`` fields."""
    return {f"ctx_{key}": value for key, value in fields.items()}


@contextmanager
def request_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every record logged inside the block."""
    bound = {key: value for key, value in fields.items() if value is not None}
    token = _REQUEST_FIELDS.set({**_REQUEST_FIELDS.get(), **bound})
    try:
        yield
    finally:
        _REQUEST_FIELDS.reset(token)


__all__ = ["configure_logging", "get_logger", "log_context", "request_context", "JsonFormatter"]
