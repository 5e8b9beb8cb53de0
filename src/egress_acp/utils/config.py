"""Config path helpers.

The config file and policy file share the OS config directory; logs go under
the configured log_dir.
"""

from __future__ import annotations

__all__ = [
    "ensure_directories",
    "get_config_dir",
    "get_config_path",
]

from pathlib import Path
from typing import TYPE_CHECKING

from egress_acp.constants import CONFIG_FILENAME
from egress_acp.utils.file_helpers import ensure_secure_directory, get_app_dir

if TYPE_CHECKING:
    from egress_acp.config import AppConfig


def get_config_dir() -> Path:
    """OS config directory (holds the config and policy files)."""
    return get_app_dir()


def get_config_path() -> Path:
    """Path to egress_acp_config.json."""
    return get_config_dir() / CONFIG_FILENAME


def ensure_directories(config: "AppConfig") -> None:
    """Create the config and log directories with owner-only permissions."""
    ensure_secure_directory(get_config_dir())
    ensure_secure_directory(config.system_log_path.parent)
    ensure_secure_directory(config.decisions_log_path.parent)
