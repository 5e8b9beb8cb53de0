"""Rule evaluation - classify request targets against allow/deny lists.

Evaluation flow:
1. Parse the raw target; failure → DENIED (fail-closed)
2. Any deny pattern matches → DENIED
3. Any allow pattern matches → ALLOWED
4. Nothing matched → UNDECIDED (escalate to a human)

Design principles:
1. Deny overrides allow regardless of list order
2. Evaluation is pure: no I/O, no shared state
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

from egress_acp.context.target import RequestTarget, parse_target
from egress_acp.exceptions import TargetParseError
from egress_acp.pdp.decision import Decision
from egress_acp.pdp.matcher import match_pattern
from egress_acp.pdp.policy import PolicySnapshot


@dataclass(frozen=True)
class Classification:
    """Result of classifying a raw target.

    Attributes:
        decision: ALLOWED, DENIED or UNDECIDED.
        target: Parsed target, or None when parsing failed.
        matched_pattern: The pattern that decided, if any.
        matched_list: Which list the pattern came from.
        error: Parse error message when the target was invalid.
    """

    decision: Decision
    target: RequestTarget | None = None
    matched_pattern: str | None = None
    matched_list: Literal["allow", "deny"] | None = None
    error: str | None = None


def first_match(patterns: Iterable[str], target: RequestTarget) -> str | None:
    """Return the first pattern that matches the target, or None."""
    for pattern in patterns:
        if match_pattern(pattern, target):
            return pattern
    return None


def evaluate(
    deny: Iterable[str],
    allow: Iterable[str],
    target: RequestTarget,
) -> Decision:
    """Evaluate a parsed target against deny then allow patterns.

    Args:
        deny: Deny patterns.
        allow: Allow patterns.
        target: Parsed request target.

    Returns:
        DENIED if any deny pattern matches, else ALLOWED if any allow pattern
        matches, else UNDECIDED.
    """
    return _evaluate(tuple(deny), tuple(allow), target).decision


def _evaluate(
    deny: tuple[str, ...],
    allow: tuple[str, ...],
    target: RequestTarget,
) -> Classification:
    pattern = first_match(deny, target)
    if pattern is not None:
        return Classification(Decision.DENIED, target, pattern, "deny")

    pattern = first_match(allow, target)
    if pattern is not None:
        return Classification(Decision.ALLOWED, target, pattern, "allow")

    return Classification(Decision.UNDECIDED, target)


def classify(raw_target: str, snapshot: PolicySnapshot) -> Classification:
    """Parse a raw target and evaluate it against a policy snapshot.

    Args:
        raw_target: Absolute URL (or synthesized tunnel target).
        snapshot: Policy snapshot to evaluate against.

    Returns:
        Classification. An unparseable target is DENIED with `error` set.
    """
    try:
        target = parse_target(raw_target)
    except TargetParseError as e:
        return Classification(Decision.DENIED, error=str(e))
    return _evaluate(snapshot.deny, snapshot.allow, target)
