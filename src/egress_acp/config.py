"""Application configuration for egress-acp.

Defines configuration models for the listener, forwarding, prompts and
logging. User creates config via `egress-acp init`. Config is stored at the
OS-appropriate location (via platformdirs); a missing config file means
defaults everywhere.

Example usage:
    # Load from config file
    config = AppConfig.load_from_files(config_path)

    # Save new configuration
    config.save_to_file(config_path)
"""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from egress_acp.constants import (
    APP_NAME,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_LISTEN_HOST,
    DEFAULT_LISTEN_PORT,
    DEFAULT_RESPONSE_HEADER_TIMEOUT_SECONDS,
    DEFAULT_TLS_HANDSHAKE_TIMEOUT_SECONDS,
    MAX_TIMEOUT_SECONDS,
    MIN_TIMEOUT_SECONDS,
)
from egress_acp.exceptions import UpstreamProxyError
from egress_acp.pdp.policy import validate_upstream_url
from egress_acp.utils.file_helpers import (
    atomic_write_text,
    get_default_log_dir,
    load_validated_json,
    require_file_exists,
)


# =============================================================================
# Sections
# =============================================================================


class ListenConfig(BaseModel):
    """Proxy listener address.

    Attributes:
        host: Interface to bind (default: localhost only).
        port: TCP port (1-65535).
    """

    host: str = DEFAULT_LISTEN_HOST
    port: int = Field(default=DEFAULT_LISTEN_PORT, ge=1, le=65535)


class ForwarderConfig(BaseModel):
    """Outbound traffic settings.

    Attributes:
        default_proxy: Proxy used when the policy sets no upstream_proxy.
            None connects directly (environment proxy variables apply).
        connect_timeout: TCP connect limit in seconds.
        tls_handshake_timeout: TLS handshake limit in seconds.
        response_header_timeout: Limit on waiting for the response, seconds.
    """

    default_proxy: str | None = None
    connect_timeout: float = Field(
        default=DEFAULT_CONNECT_TIMEOUT_SECONDS,
        ge=MIN_TIMEOUT_SECONDS,
        le=MAX_TIMEOUT_SECONDS,
    )
    tls_handshake_timeout: float = Field(
        default=DEFAULT_TLS_HANDSHAKE_TIMEOUT_SECONDS,
        ge=MIN_TIMEOUT_SECONDS,
        le=MAX_TIMEOUT_SECONDS,
    )
    response_header_timeout: float = Field(
        default=DEFAULT_RESPONSE_HEADER_TIMEOUT_SECONDS,
        ge=MIN_TIMEOUT_SECONDS,
        le=MAX_TIMEOUT_SECONDS,
    )

    @field_validator("default_proxy")
    @classmethod
    def default_proxy_is_http(cls, url: str | None) -> str | None:
        if url is None or not url.strip():
            return None
        try:
            return validate_upstream_url(url)
        except UpstreamProxyError as e:
            raise ValueError(str(e)) from e


class PromptConfig(BaseModel):
    """How undecided requests are put to the user.

    Attributes:
        provider: "auto" (macOS dialog when available, else terminal),
            "terminal", or "applescript".
    """

    provider: Literal["auto", "terminal", "applescript"] = "auto"


class LoggingConfig(BaseModel):
    """Logging configuration settings.

    Logs are stored under log_dir with this structure:
        <log_dir>/
        ├── system/
        │   └── system.jsonl
        └── audit/                  # Always enabled
            └── decisions.jsonl

    Attributes:
        log_dir: Base directory for logs.
        log_level: Logging level for system.jsonl (DEBUG or INFO).
    """

    log_dir: str = Field(default_factory=lambda: str(get_default_log_dir()))
    log_level: Literal["DEBUG", "INFO"] = "INFO"


# =============================================================================
# Root
# =============================================================================


class AppConfig(BaseModel):
    """Main application configuration for egress-acp.

    Attributes:
        listen: Listener address.
        forwarder: Outbound routing and timeouts.
        prompt: Decision prompt settings.
        logging: Log location and level.
    """

    listen: ListenConfig = Field(default_factory=ListenConfig)
    forwarder: ForwarderConfig = Field(default_factory=ForwarderConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir).expanduser()

    @property
    def system_log_path(self) -> Path:
        return self.log_dir / "system" / "system.jsonl"

    @property
    def decisions_log_path(self) -> Path:
        return self.log_dir / "audit" / "decisions.jsonl"

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file.

        Creates parent directories if they don't exist. Sets secure
        permissions (0o700 directory, 0o600 file).

        Args:
            config_path: Path where egress_acp_config.json should be saved.
        """
        atomic_write_text(config_path, json.dumps(self.model_dump(mode="json"), indent=2) + "\n")

    @classmethod
    def load_from_files(cls, config_path: Path) -> "AppConfig":
        """Load configuration from JSON file.

        Args:
            config_path: Path to the config file (egress_acp_config.json).

        Returns:
            AppConfig instance with loaded configuration.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config file is invalid.
        """
        require_file_exists(config_path, file_type="configuration")
        return load_validated_json(
            config_path,
            cls,
            file_type="config",
            recovery_hint=f"Run '{APP_NAME} init --force' to reconfigure.",
            encoding="utf-8",
        )

    @classmethod
    def load_or_default(cls, config_path: Path) -> "AppConfig":
        """Load the config file, or return defaults if it does not exist.

        Raises:
            ValueError: If the file exists but is invalid.
        """
        if not config_path.exists():
            return cls()
        return cls.load_from_files(config_path)
