"""Logging setup helpers."""

from egress_acp.utils.logging.logger_setup import (
    ConsoleFormatter,
    JsonLinesFormatter,
    iso_timestamp,
    setup_console_handler,
    setup_jsonl_logger,
)

__all__ = [
    "ConsoleFormatter",
    "JsonLinesFormatter",
    "iso_timestamp",
    "setup_console_handler",
    "setup_jsonl_logger",
]
