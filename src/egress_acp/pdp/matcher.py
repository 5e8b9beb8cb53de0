"""Glob pattern matching for allow/deny rules.

Pattern syntax:

    *        any run of characters that does not contain '/'
    ?        exactly one character other than '/'
    [abc]    one character from the class; ranges ("a-z") and negation
             ("[^abc]") are supported, a negated class never matches '/'
    \\c      the literal character c

A pattern ending in "/*" is a path prefix: its final '*' also crosses '/', so
"example.com/*" matches "example.com/" and "example.com/a/b" but not
"example.com". Elsewhere '*' stops at '/'; "*.example.com" matches
"sub.example.com" and "a.b.example.com" but not "example.com".

A malformed pattern (unterminated class, bad range, trailing backslash) never
matches. Policy loading rejects such patterns up front.
"""

from __future__ import annotations

__all__ = [
    "compile_pattern",
    "escape_pattern",
    "is_valid_pattern",
    "match_glob",
    "match_pattern",
]

import re
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from egress_acp.context.target import RequestTarget

PATH_SEPARATOR = "/"
_GLOB_SPECIAL = frozenset("*?[]\\")


def _class_char(pattern: str, i: int) -> tuple[str, int]:
    """Read one (possibly escaped) character inside a character class."""
    if i >= len(pattern):
        raise ValueError("unterminated character class")
    char = pattern[i]
    if char in "-]":
        raise ValueError(f"unexpected {char!r} in character class")
    if char == "\\":
        i += 1
        if i >= len(pattern):
            raise ValueError("unterminated character class")
        char = pattern[i]
    return char, i + 1


def _translate_class(pattern: str, start: int) -> tuple[str, int]:
    """Translate the class starting at pattern[start] == '['.

    Returns:
        Tuple of (regex fragment, index after the closing ']').
    """
    i = start + 1
    negate = i < len(pattern) and pattern[i] == "^"
    if negate:
        i += 1

    ranges: list[str] = []
    while True:
        if i >= len(pattern):
            raise ValueError("unterminated character class")
        if pattern[i] == "]" and ranges:
            i += 1
            break
        low, i = _class_char(pattern, i)
        if i < len(pattern) and pattern[i] == "-":
            high, i = _class_char(pattern, i + 1)
            if low > high:
                raise ValueError(f"invalid character range {low}-{high}")
            ranges.append(f"{re.escape(low)}-{re.escape(high)}")
        else:
            ranges.append(re.escape(low))

    body = "".join(ranges)
    if negate:
        return f"[^{PATH_SEPARATOR}{body}]", i
    return f"[{body}]", i


@lru_cache(maxsize=4096)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern into an anchored regular expression.

    Args:
        pattern: Glob pattern.

    Returns:
        Compiled regex; use fullmatch().

    Raises:
        ValueError: If the pattern is malformed.
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "*":
            if i == len(pattern) - 1 and i > 0 and pattern[i - 1] == PATH_SEPARATOR:
                parts.append(".*")
            else:
                parts.append(f"[^{PATH_SEPARATOR}]*")
        elif char == "?":
            parts.append(f"[^{PATH_SEPARATOR}]")
        elif char == "[":
            fragment, i = _translate_class(pattern, i)
            parts.append(fragment)
            continue
        elif char == "\\":
            i += 1
            if i >= len(pattern):
                raise ValueError("trailing backslash")
            parts.append(re.escape(pattern[i]))
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts), re.DOTALL)


def is_valid_pattern(pattern: str) -> bool:
    """Check whether a glob pattern is well formed and non-empty."""
    if not pattern:
        return False
    try:
        compile_pattern(pattern)
    except ValueError:
        return False
    return True


def escape_pattern(text: str) -> str:
    """Escape glob metacharacters so the pattern matches `text` literally.

    Used for rules derived from a host, e.g. "[::1]:8080" becomes
    "\\[::1\\]:8080".
    """
    return "".join(f"\\{char}" if char in _GLOB_SPECIAL else char for char in text)


def match_glob(pattern: str, value: str) -> bool:
    """Match a whole string against a glob pattern.

    Args:
        pattern: Glob pattern.
        value: String to test.

    Returns:
        True if the entire value matches; False otherwise or if the pattern
        is malformed.
    """
    try:
        compiled = compile_pattern(pattern)
    except ValueError:
        return False
    return compiled.fullmatch(value) is not None


def match_pattern(pattern: str, target: "RequestTarget") -> bool:
    """Match a rule pattern against a request target.

    The pattern is tried against "host[:port]/path". A pattern without '/'
    is also tried against "host[:port]" alone, so a bare domain rule covers
    every path on that host.

    Args:
        pattern: Rule pattern.
        target: Parsed request target.

    Returns:
        True if either form matches.
    """
    if match_glob(pattern, target.match_string):
        return True
    if PATH_SEPARATOR not in pattern:
        return match_glob(pattern, target.host)
    return False
