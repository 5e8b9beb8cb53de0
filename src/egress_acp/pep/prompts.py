"""Decision providers - ask the user about an undecided request.

Two implementations of the DecisionProvider protocol:

- TerminalDecisionProvider: numbered choice on the controlling terminal
- AppleScriptDecisionProvider: native macOS list dialog

Both offer the same four choices. "Allow Always" asks for the rule to save
(pre-filled with the suggested host pattern, must be non-empty and valid);
backing out of rule entry returns to the main prompt. "Deny Always" saves the
suggested rule as-is. Closing the prompt without choosing yields
NoChoiceDismissed.
"""

from __future__ import annotations

__all__ = [
    "AppleScriptDecisionProvider",
    "Choice",
    "TerminalDecisionProvider",
    "create_decision_provider",
]

import platform
import shutil
import threading
from enum import Enum
from typing import Literal

import click

from egress_acp.constants import APPLESCRIPT_DIALOG_TIMEOUT_SECONDS, PROMPT_TITLE
from egress_acp.pdp.matcher import is_valid_pattern
from egress_acp.pdp.outcome import (
    AllowAlways,
    AllowOnce,
    DecisionOutcome,
    DenyAlways,
    DenyOnce,
    NoChoiceDismissed,
)
from egress_acp.pep.applescript import (
    escape_applescript_string,
    parse_applescript_record,
    run_osascript,
)

ProviderKind = Literal["auto", "terminal", "applescript"]

# Typed at the rule prompt to return to the main choice
GO_BACK = "<"


class Choice(str, Enum):
    ALLOW_ONCE = "Allow Once"
    ALLOW_ALWAYS = "Allow Always"
    DENY_ONCE = "Deny Once"
    DENY_ALWAYS = "Deny Always"


CHOICES: tuple[Choice, ...] = (
    Choice.ALLOW_ONCE,
    Choice.ALLOW_ALWAYS,
    Choice.DENY_ONCE,
    Choice.DENY_ALWAYS,
)


def build_prompt_message(target: str) -> str:
    return f"A process is trying to reach:\n\n{target}\n\nHow should this request be handled?"


def _simple_outcome(choice: Choice, suggested_rule: str) -> DecisionOutcome | None:
    """Outcome for choices that need no rule entry; None for Allow Always."""
    if choice is Choice.ALLOW_ONCE:
        return AllowOnce()
    if choice is Choice.DENY_ONCE:
        return DenyOnce()
    if choice is Choice.DENY_ALWAYS:
        return DenyAlways(suggested_rule)
    return None


# =============================================================================
# Terminal
# =============================================================================


class TerminalDecisionProvider:
    """Prompt on the terminal with click.

    Output goes to stderr so it does not mix with anything piped on stdout.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def show_prompt(self, target: str, suggested_rule: str) -> DecisionOutcome:
        with self._lock:
            try:
                return self._prompt(target, suggested_rule)
            except click.Abort:
                click.echo("\n  Prompt dismissed, denying once.", err=True)
                return NoChoiceDismissed()

    def _prompt(self, target: str, suggested_rule: str) -> DecisionOutcome:
        while True:
            click.echo(err=True)
            click.secho(f"[{PROMPT_TITLE}]", fg="yellow", bold=True, err=True)
            click.echo(build_prompt_message(target), err=True)
            for number, choice in enumerate(CHOICES, start=1):
                click.echo(f"  {number}) {choice.value}", err=True)

            answer = click.prompt(
                "Choice",
                type=click.IntRange(1, len(CHOICES)),
                default=CHOICES.index(Choice.DENY_ONCE) + 1,
                err=True,
            )
            choice = CHOICES[answer - 1]

            outcome = _simple_outcome(choice, suggested_rule)
            if outcome is not None:
                return outcome

            rule = self._prompt_rule(suggested_rule)
            if rule is not None:
                return AllowAlways(rule)

    def _prompt_rule(self, suggested_rule: str) -> str | None:
        while True:
            value: str = click.prompt(
                f"Rule pattern ('{GO_BACK}' to go back)",
                type=str,
                default=suggested_rule,
                show_default=True,
                err=True,
            ).strip()
            if value == GO_BACK:
                return None
            if is_valid_pattern(value):
                return value
            click.echo(f"  Invalid pattern: {value!r}", err=True)


# =============================================================================
# macOS dialogs
# =============================================================================


class AppleScriptDecisionProvider:
    """Native macOS prompt via osascript.

    Args:
        timeout_seconds: How long a dialog waits before counting as dismissed.
    """

    def __init__(self, timeout_seconds: int = APPLESCRIPT_DIALOG_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout_seconds

    def show_prompt(self, target: str, suggested_rule: str) -> DecisionOutcome:
        while True:
            choice = self._choose(target)
            if choice is None:
                return NoChoiceDismissed()

            outcome = _simple_outcome(choice, suggested_rule)
            if outcome is not None:
                return outcome

            rule = self._enter_rule(target, suggested_rule)
            if rule is not None:
                return AllowAlways(rule)

    def _choose(self, target: str) -> Choice | None:
        items = ", ".join(f'"{c.value}"' for c in CHOICES)
        script = (
            f"choose from list {{{items}}} "
            f'with title "{escape_applescript_string(PROMPT_TITLE)}" '
            f'with prompt "{escape_applescript_string(build_prompt_message(target))}" '
            f'default items {{"{Choice.DENY_ONCE.value}"}} '
            'OK button name "Choose" cancel button name "Dismiss"'
        )
        result = run_osascript(script, timeout=self._timeout)
        # choose from list returns "false" when dismissed
        if result.cancelled or result.timed_out or result.output in ("", "false"):
            return None
        try:
            return Choice(result.output)
        except ValueError:
            return None

    def _enter_rule(self, target: str, suggested_rule: str) -> str | None:
        message = f"Rule to allow for {target}:"
        rule = suggested_rule
        while True:
            script = (
                f'display dialog "{escape_applescript_string(message)}" '
                f'default answer "{escape_applescript_string(rule)}" '
                f'with title "{escape_applescript_string(PROMPT_TITLE)}" '
                'buttons {"Back", "Save"} default button "Save" cancel button "Back" '
                f"giving up after {self._timeout}"
            )
            result = run_osascript(script, timeout=self._timeout + 10)
            if result.cancelled or result.timed_out:
                return None

            record = parse_applescript_record(result.output)
            if record.get("gave up") == "true":
                return None

            rule = record.get("text returned", "").strip()
            if is_valid_pattern(rule):
                return rule
            message = f"Invalid or empty rule. Rule to allow for {target}:"
            rule = rule or suggested_rule


def create_decision_provider(
    kind: ProviderKind = "auto",
) -> TerminalDecisionProvider | AppleScriptDecisionProvider:
    """Build a decision provider.

    Args:
        kind: "terminal", "applescript", or "auto" (AppleScript on macOS when
            osascript is available, else terminal).

    Raises:
        ValueError: If "applescript" is requested where osascript is missing.
    """
    has_osascript = platform.system() == "Darwin" and shutil.which("osascript") is not None

    if kind == "terminal":
        return TerminalDecisionProvider()
    if kind == "applescript":
        if not has_osascript:
            raise ValueError("The applescript prompt provider requires macOS (osascript not found)")
        return AppleScriptDecisionProvider()
    if kind == "auto":
        return AppleScriptDecisionProvider() if has_osascript else TerminalDecisionProvider()
    raise ValueError(f"Unknown prompt provider: {kind!r}")
