"""Request target parsing.

Turns a raw absolute URL into the canonical strings used for rule matching:

    "https://www.example.com:8080/path/to/resource?q=1"
        host         -> "www.example.com:8080"
        path         -> "/path/to/resource"
        match_string -> "www.example.com:8080/path/to/resource"

The host keeps its port and its case. The path is percent-decoded. Query and
fragment are not part of the match string. No trailing-slash normalisation.

SECURITY: any target that cannot be split into host and path raises
TargetParseError, which classification treats as DENIED.
"""

from __future__ import annotations

__all__ = [
    "RequestTarget",
    "parse_target",
    "tunnel_target",
]

import re
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from egress_acp.exceptions import TargetParseError

# A '%' not followed by two hex digits
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")

# ASCII control characters and whitespace are never valid in a request target
_CONTROL_RE = re.compile(r"[\x00-\x20\x7f]")


@dataclass(frozen=True)
class RequestTarget:
    """Parsed request target.

    Attributes:
        url: The raw target string this was parsed from.
        scheme: Lowercased URL scheme.
        host: Authority without userinfo, port included ("example.com:8080").
        hostname: Host without port, lowercased.
        path: Percent-decoded path ("" when the URL has none).
    """

    url: str
    scheme: str
    host: str
    hostname: str
    path: str

    @property
    def match_string(self) -> str:
        """The "host[:port]/path" string patterns are matched against."""
        return self.host + self.path


def tunnel_target(authority: str) -> str:
    """Synthesize the pseudo-target for a CONNECT request.

    Args:
        authority: CONNECT authority, e.g. "example.com:443".

    Returns:
        "https://<authority>".
    """
    return f"https://{authority}"


def parse_target(raw_target: str) -> RequestTarget:
    """Parse a raw absolute URL into a RequestTarget.

    Args:
        raw_target: Absolute URL (absolute-form request URI or a synthesized
            tunnel target).

    Returns:
        RequestTarget.

    Raises:
        TargetParseError: If the target is empty, contains control characters
            or invalid percent-escapes, has no scheme or host, or has an
            invalid port.
    """
    if not raw_target:
        raise TargetParseError(raw_target, "empty target")

    if _CONTROL_RE.search(raw_target):
        raise TargetParseError(raw_target, "contains whitespace or control characters")

    bad_escape = _BAD_ESCAPE_RE.search(raw_target)
    if bad_escape:
        escape = raw_target[bad_escape.start() : bad_escape.start() + 3]
        raise TargetParseError(raw_target, f"invalid URL escape {escape!r}")

    try:
        parts = urlsplit(raw_target)
        # Accessing .port validates it (non-numeric or out of range raises)
        parts.port
    except ValueError as e:
        raise TargetParseError(raw_target, str(e)) from e

    if not parts.scheme:
        raise TargetParseError(raw_target, "missing protocol scheme")

    host = parts.netloc.rpartition("@")[2]
    if not host or not parts.hostname:
        raise TargetParseError(raw_target, "missing host")

    return RequestTarget(
        url=raw_target,
        scheme=parts.scheme.lower(),
        host=host,
        hostname=parts.hostname,
        path=unquote(parts.path),
    )
