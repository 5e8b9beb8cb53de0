"""Decision logging for request enforcement.

This module provides logging for request decisions (forwarded or rejected).
Logs are written to <log_dir>/audit/decisions.jsonl.

Decision logs are ALWAYS enabled (not controlled by log_level).
"""

import logging
from pathlib import Path

from egress_acp.telemetry.models.decision import DecisionEvent
from egress_acp.utils.logging.logger_setup import setup_jsonl_logger

DECISION_LOGGER_NAME = "egress-acp.audit.decisions"


def create_decision_logger(log_path: Path) -> logging.Logger:
    """Create logger for decision events.

    Args:
        log_path: Path to decisions.jsonl file.

    Returns:
        Configured logger instance.
    """
    return setup_jsonl_logger(
        DECISION_LOGGER_NAME,
        log_path,
        log_level=logging.INFO,
        include_level=False,
    )


def log_decision(logger: logging.Logger, event: DecisionEvent) -> None:
    """Write one decision event. The formatter supplies `time`."""
    logger.info(event.model_dump(exclude={"time"}, exclude_none=True))
