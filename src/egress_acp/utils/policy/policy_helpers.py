"""Policy loader - load and save the allow/deny policy document.

This module loads policy.json from the config directory and saves policy
changes (e.g., when the user picks "Allow Always" in a prompt).

Features:
- Atomic writes (temp file + rename)
- Secure file permissions (0o700 for directory, 0o600 for file)
- Detailed validation error messages
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from egress_acp.constants import APP_NAME, POLICY_FILENAME
from egress_acp.exceptions import PolicyPersistenceError
from egress_acp.pdp.policy import PolicyConfig, PolicySnapshot, create_default_policy
from egress_acp.utils.file_helpers import (
    atomic_write_text,
    get_app_dir,
    load_validated_json,
    require_file_exists,
)

__all__ = [
    "FilePolicyPersistence",
    "create_default_policy_file",
    "get_policy_path",
    "load_policy",
    "policy_exists",
    "save_policy",
]


def get_policy_path() -> Path:
    """Get the full path to the policy file.

    Returns:
        Path to policy.json in the config directory.
    """
    return get_app_dir() / POLICY_FILENAME


def load_policy(path: Path | None = None) -> PolicyConfig:
    """Load policy configuration from file.

    Args:
        path: Path to policy.json. If None, uses default location.

    Returns:
        PolicyConfig loaded from file.

    Raises:
        FileNotFoundError: If policy file does not exist.
        ValueError: If policy file contains invalid JSON or schema.
    """
    policy_path = path or get_policy_path()
    require_file_exists(policy_path, file_type="policy")
    return load_validated_json(
        policy_path,
        PolicyConfig,
        file_type="policy",
        recovery_hint=f"Edit the policy file or run '{APP_NAME} init --force' to recreate.",
    )


def save_policy(policy: PolicyConfig, path: Path | None = None) -> None:
    """Save policy configuration to file atomically.

    Args:
        policy: PolicyConfig to save.
        path: Path to save to. If None, uses default location.

    Raises:
        OSError: If the file cannot be written.
    """
    policy_path = path or get_policy_path()
    data = policy.model_dump(mode="json")
    atomic_write_text(policy_path, json.dumps(data, indent=2) + "\n")


def policy_exists(path: Path | None = None) -> bool:
    """Check if policy file exists."""
    return (path or get_policy_path()).exists()


def create_default_policy_file(path: Path | None = None) -> PolicyConfig:
    """Create a default (empty) policy file.

    Args:
        path: Path to create. If None, uses default location.

    Returns:
        The PolicyConfig that was created.

    Raises:
        FileExistsError: If policy file already exists.
    """
    policy_path = path or get_policy_path()

    if policy_path.exists():
        raise FileExistsError(f"Policy file already exists: {policy_path}")

    policy = create_default_policy()
    save_policy(policy, policy_path)
    return policy


class FilePolicyPersistence:
    """PolicyStore persistence backed by a JSON file.

    Attributes:
        path: Location of policy.json.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or get_policy_path()

    def load(self) -> PolicyConfig:
        """Load the policy document.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is invalid.
        """
        return load_policy(self.path)

    def save(self, snapshot: PolicySnapshot) -> None:
        """Persist a snapshot.

        Raises:
            PolicyPersistenceError: If the snapshot is not a valid policy
                document or the file cannot be written.
        """
        try:
            config = snapshot.to_config()
        except ValidationError as e:
            raise PolicyPersistenceError(f"Policy revision {snapshot.revision} is not valid: {e}") from e
        try:
            save_policy(config, self.path)
        except OSError as e:
            raise PolicyPersistenceError(f"Failed to save policy to {self.path}: {e}") from e
