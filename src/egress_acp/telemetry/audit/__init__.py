"""Audit logging for request decisions."""

from egress_acp.telemetry.audit.decision_logger import (
    DECISION_LOGGER_NAME,
    create_decision_logger,
    log_decision,
)

__all__ = [
    "DECISION_LOGGER_NAME",
    "create_decision_logger",
    "log_decision",
]
