"""Outcomes a human decision can produce.

DecisionOutcome is a closed union. Consumers branch on it exactly once (the
interceptor) and treat anything they do not recognise as a rejection.
"""

from __future__ import annotations

__all__ = [
    "AllowAlways",
    "AllowOnce",
    "DecisionOutcome",
    "DenyAlways",
    "DenyOnce",
    "NoChoiceDismissed",
    "ProviderError",
    "KNOWN_OUTCOMES",
    "outcome_name",
]

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class AllowOnce:
    """Forward this request only."""


@dataclass(frozen=True)
class DenyOnce:
    """Reject this request only."""


@dataclass(frozen=True)
class AllowAlways:
    """Forward and add `rule` to the allow list (empty: use the target host)."""

    rule: str = ""


@dataclass(frozen=True)
class DenyAlways:
    """Reject and add `rule` to the deny list (empty: use the target host)."""

    rule: str = ""


@dataclass(frozen=True)
class ProviderError:
    """The decision provider failed."""

    error: str


@dataclass(frozen=True)
class NoChoiceDismissed:
    """The prompt went away without an answer (closed, or broker stopped)."""


DecisionOutcome = Union[AllowOnce, DenyOnce, AllowAlways, DenyAlways, ProviderError, NoChoiceDismissed]

KNOWN_OUTCOMES: tuple[type, ...] = (
    AllowOnce,
    DenyOnce,
    AllowAlways,
    DenyAlways,
    ProviderError,
    NoChoiceDismissed,
)


def outcome_name(outcome: object) -> str:
    """Snake-case name for logs ("allow_once", "deny_always", ...)."""
    names = {
        AllowOnce: "allow_once",
        DenyOnce: "deny_once",
        AllowAlways: "allow_always",
        DenyAlways: "deny_always",
        ProviderError: "provider_error",
        NoChoiceDismissed: "dismissed",
    }
    return names.get(type(outcome), "unknown")
