"""Exception taxonomy for egress-acp.

None of these are fatal to the process. Each one degrades to rejecting a
single request (or, for persistence, to an on-disk copy that lags memory).
"""

from __future__ import annotations

__all__ = [
    "DecisionProviderError",
    "EgressAcpError",
    "ForwardError",
    "InvalidPatternError",
    "PolicyPersistenceError",
    "TargetParseError",
    "UpstreamProxyError",
]


class EgressAcpError(Exception):
    """Base class for egress-acp errors."""


class TargetParseError(EgressAcpError, ValueError):
    """The raw request target could not be parsed into host and path.

    Classification treats this as DENIED (fail-closed).
    """

    def __init__(self, raw_target: str, reason: str) -> None:
        self.raw_target = raw_target
        self.reason = reason
        super().__init__(f"Cannot parse request target {raw_target!r}: {reason}")


class InvalidPatternError(EgressAcpError, ValueError):
    """A rule pattern is empty or not a well-formed glob."""

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        super().__init__(f"Invalid pattern {pattern!r}")


class PolicyPersistenceError(EgressAcpError):
    """Saving or loading the policy document failed."""


class DecisionProviderError(EgressAcpError):
    """The human decision provider could not produce an answer."""


class UpstreamProxyError(EgressAcpError, ValueError):
    """An upstream proxy URL is malformed or uses an unsupported scheme."""


class ForwardError(EgressAcpError):
    """Forwarding an allowed request to its destination failed.

    Attributes:
        status_code: HTTP status to report to the client.
    """

    def __init__(self, message: str, status_code: int = 502) -> None:
        self.status_code = status_code
        super().__init__(message)
