"""Policy hot reload support.

Provides PolicyReloader for reloading policy.json without restarting the
proxy. The file is validated before anything changes; on failure the current
snapshot stays active (last-known-good).

Triggers:
- SIGHUP signal (Unix) while `egress-acp start` runs
"""

from __future__ import annotations

__all__ = [
    "PolicyReloader",
    "ReloadResult",
]

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from egress_acp.utils.policy import get_policy_path, load_policy

if TYPE_CHECKING:
    import logging

    from egress_acp.pep.store import PolicyStore


@dataclass
class ReloadResult:
    """Result of a policy reload attempt.

    Attributes:
        status: "success", "validation_error", or "file_error".
        old_allow_count: Allow rules before reload.
        old_deny_count: Deny rules before reload.
        new_allow_count: Allow rules after reload.
        new_deny_count: Deny rules after reload.
        error: Error message if status is not "success".
        revision: Snapshot revision after a successful reload.
    """

    status: Literal["success", "validation_error", "file_error"]
    old_allow_count: int = 0
    old_deny_count: int = 0
    new_allow_count: int = 0
    new_deny_count: int = 0
    error: str | None = None
    revision: int | None = None


class PolicyReloader:
    """Reloads the policy file into a PolicyStore.

    Thread-safe: a lock serialises reloads; the store swap itself is atomic.
    """

    def __init__(
        self,
        store: "PolicyStore",
        system_logger: "logging.Logger",
        policy_path: Path | None = None,
    ) -> None:
        """Initialize policy reloader.

        Args:
            store: Store to install the reloaded policy into.
            system_logger: Logger for reload events.
            policy_path: Path to policy.json. If None, uses default.
        """
        self._store = store
        self._logger = system_logger
        self._policy_path = policy_path or get_policy_path()
        self._last_reload_at: datetime | None = None
        self._reload_count = 0
        self._reload_lock = threading.Lock()

    @property
    def last_reload_at(self) -> str | None:
        """ISO 8601 timestamp of last successful reload, or None."""
        return self._last_reload_at.isoformat() if self._last_reload_at else None

    @property
    def reload_count(self) -> int:
        """Number of successful reloads since startup."""
        return self._reload_count

    def reload(self) -> ReloadResult:
        """Reload policy from disk.

        On any failure the old policy remains active.

        Returns:
            ReloadResult with status and rule counts.
        """
        with self._reload_lock:
            old = self._store.snapshot()
            counts = {"old_allow_count": len(old.allow), "old_deny_count": len(old.deny)}

            try:
                new_policy = load_policy(self._policy_path)
            except FileNotFoundError:
                error_msg = f"Policy file not found: {self._policy_path}"
                self._log_reload_failed("file_not_found", error_msg)
                return ReloadResult(status="file_error", error=error_msg, **counts)
            except ValueError as e:
                error_msg = str(e)
                self._log_reload_failed("validation_error", error_msg)
                return ReloadResult(status="validation_error", error=error_msg, **counts)
            except OSError as e:
                error_msg = f"{type(e).__name__}: {e}"
                self._log_reload_failed("unexpected_error", error_msg)
                return ReloadResult(status="file_error", error=error_msg, **counts)

            new = self._store.replace(
                new_policy.allow_always,
                new_policy.deny_always,
                upstream_proxy=new_policy.upstream_proxy,
            )
            self._last_reload_at = datetime.now(timezone.utc)
            self._reload_count += 1

            result = ReloadResult(
                status="success",
                new_allow_count=len(new.allow),
                new_deny_count=len(new.deny),
                revision=new.revision,
                **counts,
            )
            self._log_reload_success(result)
            return result

    def _log_reload_success(self, result: ReloadResult) -> None:
        self._logger.info(
            {
                "event": "policy_reloaded",
                "old_allow_count": result.old_allow_count,
                "old_deny_count": result.old_deny_count,
                "new_allow_count": result.new_allow_count,
                "new_deny_count": result.new_deny_count,
                "revision": result.revision,
                "reload_count": self._reload_count,
            }
        )

    def _log_reload_failed(self, error_type: str, error: str) -> None:
        self._logger.error(
            {
                "event": "policy_reload_failed",
                "error_type": error_type,
                "error": error,
                "policy_path": str(self._policy_path),
            }
        )
