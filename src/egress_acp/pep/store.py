"""Live policy store.

Holds the current PolicySnapshot and accepts updates while requests are being
evaluated on other threads.

Thread safety strategy: copy-on-write. Writers build a new immutable snapshot
under one lock and publish it with a single reference assignment. Readers call
snapshot() without locking and evaluate against whatever snapshot they got;
it never changes underneath them.

Persistence runs after publishing, under a separate lock, and always writes
the newest snapshot. A failed save is logged; the in-memory change stays.
"""

from __future__ import annotations

__all__ = [
    "PolicyPersistence",
    "PolicyStore",
]

import threading
from typing import Iterable, Literal, Protocol

from egress_acp.exceptions import InvalidPatternError, PolicyPersistenceError
from egress_acp.pdp.matcher import is_valid_pattern
from egress_acp.pdp.policy import PolicySnapshot, validate_upstream_url
from egress_acp.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()

# Sentinel for "leave the upstream proxy as it is"
_UNCHANGED = object()


class PolicyPersistence(Protocol):
    """Saves policy snapshots somewhere durable."""

    def save(self, snapshot: PolicySnapshot) -> None:
        """Persist the snapshot. Raises PolicyPersistenceError on failure."""
        ...


class PolicyStore:
    """Concurrency-safe container for the live rule set.

    Args:
        initial: Snapshot to start from (empty if None).
        persistence: Where append/set_upstream changes are saved. None keeps
            the store memory-only.
    """

    def __init__(
        self,
        initial: PolicySnapshot | None = None,
        persistence: PolicyPersistence | None = None,
    ) -> None:
        self._snapshot = initial or PolicySnapshot()
        self._persistence = persistence
        self._write_lock = threading.Lock()
        self._persist_lock = threading.Lock()

    def snapshot(self) -> PolicySnapshot:
        """Return the current snapshot. Never blocks."""
        return self._snapshot

    def replace(
        self,
        allow: Iterable[str],
        deny: Iterable[str],
        upstream_proxy: str | None | object = _UNCHANGED,
    ) -> PolicySnapshot:
        """Atomically install a new rule set. Does not persist.

        Args:
            allow: New allow patterns (duplicates dropped, order kept).
            deny: New deny patterns (duplicates dropped, order kept).
            upstream_proxy: New upstream proxy, None to clear, or omitted to
                keep the current one.

        Returns:
            The published snapshot.
        """
        with self._write_lock:
            current = self._snapshot
            upstream = current.upstream_proxy if upstream_proxy is _UNCHANGED else upstream_proxy
            self._snapshot = current.evolve(
                allow=tuple(dict.fromkeys(allow)),
                deny=tuple(dict.fromkeys(deny)),
                upstream_proxy=upstream,
            )
            published = self._snapshot

        _system_logger.info(
            {
                "event": "policy_replaced",
                "message": f"Policy replaced: {len(published.allow)} allow, {len(published.deny)} deny",
                "revision": published.revision,
            }
        )
        return published

    def append_allow(self, pattern: str) -> bool:
        """Add a pattern to the allow list.

        Returns:
            True if the list changed, False if the pattern was already present.

        Raises:
            InvalidPatternError: If the pattern is empty or malformed.
        """
        return self._append("allow", pattern)

    def append_deny(self, pattern: str) -> bool:
        """Add a pattern to the deny list.

        Returns:
            True if the list changed, False if the pattern was already present.

        Raises:
            InvalidPatternError: If the pattern is empty or malformed.
        """
        return self._append("deny", pattern)

    def set_upstream(self, url: str | None) -> PolicySnapshot:
        """Set (or clear with None) the upstream proxy and persist.

        Raises:
            UpstreamProxyError: If the URL is not a valid http(s) proxy URL.
        """
        if url is not None:
            url = validate_upstream_url(url)

        with self._write_lock:
            self._snapshot = self._snapshot.evolve(upstream_proxy=url)
            published = self._snapshot

        _system_logger.info(
            {
                "event": "upstream_proxy_set" if url else "upstream_proxy_cleared",
                "upstream_proxy": url,
                "revision": published.revision,
            }
        )
        self._persist()
        return published

    def _append(self, kind: Literal["allow", "deny"], pattern: str) -> bool:
        if not is_valid_pattern(pattern):
            raise InvalidPatternError(pattern)

        with self._write_lock:
            current = self._snapshot
            patterns = current.allow if kind == "allow" else current.deny
            if pattern in patterns:
                return False
            if kind == "allow":
                self._snapshot = current.evolve(allow=patterns + (pattern,))
            else:
                self._snapshot = current.evolve(deny=patterns + (pattern,))
            revision = self._snapshot.revision

        _system_logger.info(
            {
                "event": f"{kind}_rule_added",
                "message": f"Added {kind} rule: {pattern}",
                "pattern": pattern,
                "revision": revision,
            }
        )
        self._persist()
        return True

    def _persist(self) -> None:
        if self._persistence is None:
            return
        with self._persist_lock:
            latest = self._snapshot
            try:
                self._persistence.save(latest)
            except PolicyPersistenceError as e:
                _system_logger.error(
                    {
                        "event": "policy_persist_failed",
                        "message": str(e),
                        "error_type": type(e).__name__,
                        "revision": latest.revision,
                    }
                )
