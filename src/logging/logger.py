# src/logging/logger.py — v3
"""Formatters and handler setup for the ``quotabar`` logger tree.

Every line carries the fetch context (provider, interaction, candidate) and
goes through secret redaction, since provider errors can echo request
headers and tokens back into a message.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from quotabar.logging.context import LogContext, get_context
from quotabar.parsers.redaction import redact_sensitive

ROOT_LOGGER = "quotabar"
# Third-party loggers kept at WARNING unless quotabar itself runs at DEBUG
LIBRARY_LOGGERS = ("httpx", "httpcore")


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


def _record_message(record: logging.LogRecord) -> str:
    return redact_sensitive(record.getMessage())


def _record_exception(formatter: logging.Formatter, record: logging.LogRecord) -> str | None:
    if not record.exc_info or record.exc_info[1] is None:
        return None
    return redact_sensitive(formatter.formatException(record.exc_info))


def context_tag(ctx: LogContext) -> str:
    """``provider/interaction@candidate``, or "" outside a fetch."""
    if not ctx.provider:
        return ""
    tag = ctx.provider
    if ctx.interaction:
        tag += f"/{ctx.interaction}"
    if ctx.candidate:
        tag += f"@{ctx.candidate}"
    return tag


class JsonFormatter(logging.Formatter):
    """One flat JSON object per line; context fields sit beside ``msg``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": _record_time(record).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": _record_message(record),
        }
        entry.update(get_context().as_dict())
        exc = _record_exception(self, record)
        if exc:
            entry["exc"] = exc
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [provider/interaction@candidate]: message``"""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{_record_time(record):%H:%M:%S} {record.levelname:<7} {record.name}"
        tag = context_tag(get_context())
        if tag:
            line += f" [{tag}]"
        line += f": {_record_message(record)}"
        exc = _record_exception(self, record)
        if exc:
            line += "\n" + exc
        return line


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 5,
) -> None:
    """(Re)configure the ``quotabar`` logger.

    Console output goes to stderr; stdout belongs to the CLI. Calling this
    again replaces the previous handlers.

    Args:
        level: Log level name.
        log_format: "json" or "text".
        log_file: Optional rotating log file.
        rotation: Size that triggers a rotation (e.g. "10MB").
        retention: Rotated files kept.
    """
    from quotabar.logging.handlers import create_rotating_handler

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(create_rotating_handler(log_file, rotation=rotation, retention=retention))

    root = logging.getLogger(ROOT_LOGGER)
    for old in root.handlers:
        old.close()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    library_level = logging.DEBUG if root.level == logging.DEBUG else logging.WARNING
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
