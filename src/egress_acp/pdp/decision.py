"""Rule evaluation result."""

from __future__ import annotations

__all__ = ["Decision"]

from enum import Enum


class Decision(str, Enum):
    """Outcome of evaluating a target against the allow/deny lists.

    ALLOWED: An allow pattern matched and no deny pattern did.
    DENIED: A deny pattern matched, or the target could not be parsed.
    UNDECIDED: Nothing matched; a human must decide.
    """

    ALLOWED = "allowed"
    DENIED = "denied"
    UNDECIDED = "undecided"
