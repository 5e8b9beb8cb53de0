"""AppleScript utilities for macOS dialog handling.

Provides safe string escaping, output parsing and an osascript runner for the
native decision prompts.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass

from egress_acp.exceptions import DecisionProviderError

__all__ = [
    "OsascriptResult",
    "escape_applescript_string",
    "parse_applescript_record",
    "run_osascript",
]

# osascript error number for "User canceled."
USER_CANCELED_ERROR = "-128"


def escape_applescript_string(s: str) -> str:
    """Escape a string for safe use in AppleScript.

    Escapes backslashes, double quotes, and control characters to prevent
    AppleScript injection and ensure proper dialog rendering.

    Args:
        s: The string to escape.

    Returns:
        Escaped string safe for AppleScript interpolation.

    Example:
        >>> escape_applescript_string('https://evil.com/"x')
        'https://evil.com/\\\\"x'
        >>> escape_applescript_string('line1\\nline2')
        'line1 line2'
    """
    # Control characters first, before backslash escaping
    s = s.replace("\n", " ")
    s = s.replace("\r", " ")
    s = s.replace("\t", " ")
    # Backslashes must be escaped before quotes
    s = s.replace("\\", "\\\\")
    s = s.replace('"', '\\"')
    return s


def parse_applescript_record(output: str) -> dict[str, str]:
    """Parse AppleScript record output into a dictionary.

    AppleScript returns records like:
        {button returned:"Save", text returned:"*.example.com", gave up:false}

    Args:
        output: Raw osascript stdout output.

    Returns:
        Dictionary of key-value pairs from the record, values as strings.

    Example:
        >>> parse_applescript_record('{button returned:"Save", gave up:false}')
        {'button returned': 'Save', 'gave up': 'false'}
    """
    result: dict[str, str] = {}

    # key:"quoted value" or key:unquoted_value
    pattern = r'(\w+(?:\s+\w+)*)\s*:\s*(?:"((?:[^"\\]|\\.)*)"|(\w+))'

    for match in re.finditer(pattern, output):
        key = match.group(1)
        value = match.group(2) if match.group(2) is not None else match.group(3)
        result[key] = value

    return result


@dataclass(frozen=True)
class OsascriptResult:
    """Outcome of one osascript run.

    Attributes:
        output: Stripped stdout.
        cancelled: The user pressed the cancel button.
        timed_out: The script did not finish in time.
    """

    output: str = ""
    cancelled: bool = False
    timed_out: bool = False


def run_osascript(script: str, timeout: float) -> OsascriptResult:
    """Run an AppleScript snippet.

    Args:
        script: AppleScript source.
        timeout: Seconds before the osascript process is killed.

    Returns:
        OsascriptResult.

    Raises:
        DecisionProviderError: If osascript is missing or fails for a reason
            other than the user cancelling.
    """
    try:
        completed = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return OsascriptResult(timed_out=True)
    except OSError as e:
        raise DecisionProviderError(f"Cannot run osascript: {e}") from e

    if completed.returncode != 0:
        if USER_CANCELED_ERROR in completed.stderr:
            return OsascriptResult(cancelled=True)
        raise DecisionProviderError(f"osascript failed ({completed.returncode}): {completed.stderr.strip()}")

    return OsascriptResult(output=completed.stdout.strip())
