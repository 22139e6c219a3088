"""Logging setup for the tagger.

Records go to stdout, so log lines always go to stderr. Both formatters redact
credentials from messages, arguments and the active :class:`LogContext`
(holdings links often carry tokens in their query string).
"""

from __future__ import annotations

import argparse
import contextvars
import json
import logging
import sys
import time
from typing import Any

from isil_tagger.secrets import redact_string, redact_structure

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
NOISY_LOGGERS = ("urllib3",)

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "log_context", default=None
)


def get_log_context() -> dict[str, Any]:
    ctx = _log_context.get()
    return ctx.copy() if ctx else {}


def clear_log_context() -> None:
    _log_context.set({})


class LogContext:
    """Add fields such as the batch number or holdings reference to every log line."""

    def __init__(self, **fields: Any):
        self.fields = fields
        self.token: contextvars.Token | None = None

    def __enter__(self) -> LogContext:
        self.token = _log_context.set({**get_log_context(), **self.fields})
        return self

    def __exit__(self, *args: Any) -> None:
        if self.token is not None:
            _log_context.reset(self.token)


def _redacted_message(record: logging.LogRecord) -> str:
    msg = str(redact_structure(record.msg))
    args = redact_structure(record.args)
    if args:
        try:
            msg = msg % args
        except (TypeError, ValueError):
            pass
    return redact_string(msg)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s")
        self.converter = time.gmtime

    def formatMessage(self, record: logging.LogRecord) -> str:
        record.message = _redacted_message(record)
        line = super().formatMessage(record)
        context = get_log_context()
        if context:
            line = f"{line} | {json.dumps(redact_structure(context), sort_keys=True, default=str)}"
        return line

    def formatException(self, ei: Any) -> str:
        return redact_string(super().formatException(ei))


class JsonFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__()
        self.converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": _redacted_message(record),
        }
        context = get_log_context()
        if context:
            payload["context"] = redact_structure(context)
        if record.exc_info:
            payload["exc_info"] = redact_string(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(*, level: str = "INFO", fmt: str = "text") -> None:
    """Set the root level and install a stderr handler unless one is present."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter() if fmt == "json" else TextFormatter())
        root.addHandler(handler)
    # Per-connection chatter from the retry adapter only at debug level.
    noisy_level = logging.DEBUG if root.level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        default="text",
        choices=["text", "json"],
        help="Log line format on stderr (default: text)",
    )
