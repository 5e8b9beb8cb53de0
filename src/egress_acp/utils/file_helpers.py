"""File and directory helpers shared by config, policy and log handling."""

from __future__ import annotations

__all__ = [
    "atomic_write_text",
    "ensure_secure_directory",
    "get_app_dir",
    "get_default_log_dir",
    "load_validated_json",
    "require_file_exists",
    "set_secure_permissions",
]

import json
import os
import tempfile
from pathlib import Path
from typing import TypeVar

from platformdirs import user_config_dir, user_log_dir
from pydantic import BaseModel, ValidationError

from egress_acp.constants import APP_NAME

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_app_dir() -> Path:
    """Get the OS-appropriate config directory.

    - macOS: ~/Library/Application Support/egress-acp
    - Linux: ~/.config/egress-acp (XDG compliant)
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\egress-acp

    Returns:
        Path to the config directory.
    """
    return Path(user_config_dir(APP_NAME, appauthor=False))


def get_default_log_dir() -> Path:
    """Get the OS-appropriate log directory used when none is configured."""
    return Path(user_log_dir(APP_NAME, appauthor=False))


def set_secure_permissions(path: Path, is_directory: bool = False) -> None:
    """Restrict a path to its owner (0o700 for directories, 0o600 for files).

    Failures are ignored on filesystems that do not support chmod.
    """
    mode = 0o700 if is_directory else 0o600
    try:
        os.chmod(path, mode)
    except OSError:
        pass


def ensure_secure_directory(path: Path) -> Path:
    """Create a directory (and parents) with owner-only permissions."""
    path.mkdir(parents=True, exist_ok=True)
    set_secure_permissions(path, is_directory=True)
    return path


def atomic_write_text(path: Path, content: str) -> None:
    """Write a text file atomically with 0o600 permissions.

    Writes to a temp file in the same directory, fsyncs, then renames over
    the target, so readers see either the old or the new content.

    Args:
        path: Destination file. Parent directories are created (0o700).
        content: Text to write.

    Raises:
        OSError: If the write or rename fails. The temp file is removed.
    """
    ensure_secure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.stem}_",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, 0o600)
        os.replace(temp_path, path)

    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def require_file_exists(path: Path, file_type: str = "file") -> None:
    """Raise FileNotFoundError with an init hint if `path` is missing."""
    if not path.exists():
        raise FileNotFoundError(
            f"{file_type.capitalize()} file not found at {path}.\n" f"Run '{APP_NAME} init' to create it."
        )


def load_validated_json(
    path: Path,
    model: type[ModelT],
    file_type: str = "file",
    recovery_hint: str = "",
    encoding: str = "utf-8",
) -> ModelT:
    """Load a JSON file and validate it against a pydantic model.

    Args:
        path: File to read.
        model: Pydantic model class.
        file_type: Name used in error messages ("config", "policy", ...).
        recovery_hint: Appended to validation error messages.
        encoding: File encoding.

    Returns:
        Validated model instance.

    Raises:
        ValueError: If the file is unreadable, not JSON, or fails validation.
    """
    try:
        with path.open(encoding=encoding) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {file_type} file {path}: {e}") from e
    except OSError as e:
        raise ValueError(f"Could not read {file_type} file {path}: {e}") from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"]) or "(root)"
            errors.append(f"  - {loc}: {error['msg']}")
        message = f"Invalid {file_type} in {path}:\n" + "\n".join(errors)
        if recovery_hint:
            message += f"\n\n{recovery_hint}"
        raise ValueError(message) from e
