"""System (operational) logging."""

from egress_acp.telemetry.system.system_logger import (
    SYSTEM_LOGGER_NAME,
    configure_system_logger,
    get_system_logger,
)

__all__ = [
    "SYSTEM_LOGGER_NAME",
    "configure_system_logger",
    "get_system_logger",
]
