"""System logger for operational events.

Before configure_system_logger() runs, warnings and errors go to stderr only.
Once configured, every event at or above the configured level is also written
to <log_dir>/system/system.jsonl.
"""

from __future__ import annotations

import logging
from pathlib import Path

from egress_acp.utils.logging.logger_setup import setup_console_handler, setup_jsonl_logger

SYSTEM_LOGGER_NAME = "egress-acp.system"


def get_system_logger() -> logging.Logger:
    """Get the system logger, attaching a stderr handler on first use."""
    logger = logging.getLogger(SYSTEM_LOGGER_NAME)
    if not logger.handlers:
        logger.setLevel(logging.INFO)
        logger.propagate = False
        setup_console_handler(logger, logging.WARNING)
    return logger


def configure_system_logger(
    log_path: Path,
    log_level: str = "INFO",
    console_level: int = logging.WARNING,
) -> logging.Logger:
    """Route system events to a JSONL file plus stderr.

    Args:
        log_path: Path to system.jsonl.
        log_level: "DEBUG" or "INFO" for the file.
        console_level: Minimum level echoed to stderr.

    Returns:
        The configured system logger.
    """
    logger = setup_jsonl_logger(
        SYSTEM_LOGGER_NAME,
        log_path,
        log_level=getattr(logging, log_level.upper(), logging.INFO),
    )
    setup_console_handler(logger, console_level)
    return logger
