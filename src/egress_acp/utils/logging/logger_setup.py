"""Logger construction helpers.

Loggers in egress-acp take dicts as messages:

    logger.info({"event": "policy_reloaded", "revision": 3})

JsonLinesFormatter renders each dict as one JSON object per line with an ISO
8601 `time` (and, for system logs, `level`) prepended. Plain string messages
become {"message": ...}.
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "JsonLinesFormatter",
    "iso_timestamp",
    "setup_console_handler",
    "setup_jsonl_logger",
]

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from egress_acp.utils.file_helpers import ensure_secure_directory


def iso_timestamp(created: float) -> str:
    """Format a record timestamp as ISO 8601 UTC with milliseconds."""
    return (
        datetime.fromtimestamp(created, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    if isinstance(record.msg, dict):
        return dict(record.msg)
    return {"message": record.getMessage()}


class JsonLinesFormatter(logging.Formatter):
    """Render dict log messages as single-line JSON."""

    def __init__(self, include_level: bool = True) -> None:
        super().__init__()
        self._include_level = include_level

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {"time": iso_timestamp(record.created)}
        if self._include_level:
            entry["level"] = record.levelname
        entry.update(_record_fields(record))
        if record.exc_info:
            entry.setdefault("stacktrace", self.formatException(record.exc_info))
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Short human-readable rendering for stderr.

    Example: "12:03:44 WARNING policy_persist_failed: Permission denied"
    """

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        event = fields.get("event")
        message = fields.get("message")
        if event and message:
            text = f"{event}: {message}"
        else:
            text = str(event or message or fields)
        return f"{clock} {record.levelname} {text}"


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_jsonl_logger(
    name: str,
    log_path: Path,
    log_level: int = logging.INFO,
    include_level: bool = True,
) -> logging.Logger:
    """Configure a logger that writes JSON lines to a file.

    Existing handlers on the logger are closed and replaced, so calling this
    twice with the same name re-targets the logger.

    Args:
        name: Logger name.
        log_path: File to append to. Parent directories are created (0o700).
        log_level: Minimum level.
        include_level: Whether to emit the `level` field.

    Returns:
        Configured logger (does not propagate to the root logger).
    """
    ensure_secure_directory(log_path.parent)

    logger = logging.getLogger(name)
    _reset_handlers(logger)
    logger.setLevel(log_level)
    logger.propagate = False

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(JsonLinesFormatter(include_level=include_level))
    logger.addHandler(handler)
    return logger


def setup_console_handler(logger: logging.Logger, level: int = logging.WARNING) -> logging.Handler:
    """Attach a stderr handler using ConsoleFormatter."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(ConsoleFormatter())
    logger.addHandler(handler)
    return handler
