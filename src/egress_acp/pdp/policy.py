"""Policy models for allow/deny rule evaluation.

Policy structure:
    PolicyConfig (persisted document, validated)
    ├── allow_always: list of glob patterns
    ├── deny_always: list of glob patterns
    └── upstream_proxy: optional http(s) proxy URL

    PolicySnapshot (in-memory, immutable)
    ├── allow / deny: ordered tuples of patterns
    ├── upstream_proxy
    └── revision: bumped by the store on every publish

Design principles:
1. Precedence is structural: deny is checked before allow
2. A rule's kind is the list it lives in; there is no per-rule effect field
3. Snapshots are never mutated; updates publish a new snapshot
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Self
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from egress_acp.constants import SUPPORTED_UPSTREAM_SCHEMES
from egress_acp.exceptions import UpstreamProxyError
from egress_acp.pdp.matcher import is_valid_pattern


def validate_upstream_url(url: str) -> str:
    """Validate an upstream proxy URL.

    Args:
        url: Proxy URL, e.g. "http://proxy.corp:8080".

    Returns:
        The URL, stripped of surrounding whitespace.

    Raises:
        UpstreamProxyError: If the URL has no host or an unsupported scheme.
    """
    url = url.strip()
    try:
        parts = urlsplit(url)
        parts.port
    except ValueError as e:
        raise UpstreamProxyError(f"Invalid upstream proxy URL {url!r}: {e}") from e

    if parts.scheme.lower() not in SUPPORTED_UPSTREAM_SCHEMES:
        raise UpstreamProxyError(
            f"Unsupported upstream proxy scheme {parts.scheme!r} in {url!r}. "
            f"Supported: {', '.join(SUPPORTED_UPSTREAM_SCHEMES)}"
        )
    if not parts.hostname:
        raise UpstreamProxyError(f"Upstream proxy URL {url!r} has no host")
    return url


def _dedupe(patterns: Iterable[str]) -> tuple[str, ...]:
    """Drop exact duplicates, keeping first-occurrence order."""
    return tuple(dict.fromkeys(patterns))


class PolicyConfig(BaseModel):
    """Persisted policy document.

    Attributes:
        allow_always: Patterns that are allowed without asking.
        deny_always: Patterns that are always blocked. Checked first.
        upstream_proxy: Proxy that allowed traffic is routed through, or None
            for default routing.
    """

    allow_always: list[str] = Field(default_factory=list)
    deny_always: list[str] = Field(default_factory=list)
    upstream_proxy: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("allow_always", "deny_always")
    @classmethod
    def patterns_are_valid(cls, patterns: list[str]) -> list[str]:
        """Reject empty or malformed glob patterns."""
        for pattern in patterns:
            if not is_valid_pattern(pattern):
                raise ValueError(f"invalid pattern {pattern!r}")
        return patterns

    @field_validator("upstream_proxy")
    @classmethod
    def upstream_is_http(cls, url: str | None) -> str | None:
        """Empty string means no upstream; otherwise it must be http(s)."""
        if url is None or not url.strip():
            return None
        try:
            return validate_upstream_url(url)
        except UpstreamProxyError as e:
            raise ValueError(str(e)) from e


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of the live rule set.

    Attributes:
        allow: Allow patterns, in insertion order.
        deny: Deny patterns, in insertion order.
        upstream_proxy: Routing override, or None.
        revision: Publish counter; 0 for a snapshot built outside the store.
    """

    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()
    upstream_proxy: str | None = None
    revision: int = 0

    @classmethod
    def from_config(cls, config: PolicyConfig, revision: int = 0) -> Self:
        """Build a snapshot from a validated policy document."""
        return cls(
            allow=_dedupe(config.allow_always),
            deny=_dedupe(config.deny_always),
            upstream_proxy=config.upstream_proxy,
            revision=revision,
        )

    def to_config(self) -> PolicyConfig:
        """Convert back to the persisted document form."""
        return PolicyConfig(
            allow_always=list(self.allow),
            deny_always=list(self.deny),
            upstream_proxy=self.upstream_proxy,
        )

    def evolve(self, **changes: object) -> Self:
        """Copy with changes applied and the revision bumped."""
        return replace(self, revision=self.revision + 1, **changes)  # type: ignore[arg-type]


def create_default_policy() -> PolicyConfig:
    """Empty policy: nothing allowed, nothing denied, default routing.

    Every request is escalated to the user until rules accumulate.
    """
    return PolicyConfig()
