"""Tests for decision providers and AppleScript helpers.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

import subprocess
from unittest.mock import MagicMock, patch

import click
import pytest

from egress_acp.exceptions import DecisionProviderError
from egress_acp.pdp.outcome import AllowAlways, AllowOnce, DenyAlways, DenyOnce, NoChoiceDismissed
from egress_acp.pep.applescript import (
    OsascriptResult,
    escape_applescript_string,
    parse_applescript_record,
    run_osascript,
)
from egress_acp.pep.prompts import (
    AppleScriptDecisionProvider,
    TerminalDecisionProvider,
    create_decision_provider,
)

TARGET = "https://api.example.com/v1"
SUGGESTED = "api.example.com"


# --- Fixtures ---


def saved(rule: str) -> OsascriptResult:
    return OsascriptResult(output=f'{{button returned:"Save", text returned:"{rule}", gave up:false}}')


# --- Terminal Provider ---


class TestTerminalProvider:
    """Tests for the click-based terminal prompt."""

    @pytest.mark.parametrize(
        "answer,expected",
        [
            (1, AllowOnce()),
            (3, DenyOnce()),
            (4, DenyAlways(SUGGESTED)),
        ],
    )
    def test_simple_choices(self, answer: int, expected):
        # Arrange
        provider = TerminalDecisionProvider()

        # Act
        with patch("click.prompt", return_value=answer):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == expected

    def test_allow_always_prompts_for_rule(self):
        # Arrange
        provider = TerminalDecisionProvider()

        # Act
        with patch("click.prompt", side_effect=[2, "*.example.com"]) as mock_prompt:
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == AllowAlways("*.example.com")
        assert mock_prompt.call_args.kwargs["default"] == SUGGESTED

    def test_go_back_returns_to_main_choice(self):
        # Arrange
        provider = TerminalDecisionProvider()

        # Act
        with patch("click.prompt", side_effect=[2, "<", 1]):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == AllowOnce()

    def test_invalid_rule_is_asked_again(self):
        # Arrange
        provider = TerminalDecisionProvider()

        # Act
        with patch("click.prompt", side_effect=[2, "[bad", "good.com"]):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == AllowAlways("good.com")

    def test_abort_is_dismissal(self):
        # Arrange
        provider = TerminalDecisionProvider()

        # Act
        with patch("click.prompt", side_effect=click.Abort()):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == NoChoiceDismissed()


# --- AppleScript Provider ---


class TestAppleScriptProvider:
    """Tests for the osascript dialog provider."""

    def test_allow_once(self):
        # Arrange
        provider = AppleScriptDecisionProvider(timeout_seconds=5)

        # Act
        with patch("egress_acp.pep.prompts.run_osascript", return_value=OsascriptResult(output="Allow Once")):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == AllowOnce()

    @pytest.mark.parametrize(
        "result",
        [
            OsascriptResult(output="false"),
            OsascriptResult(cancelled=True),
            OsascriptResult(timed_out=True),
        ],
    )
    def test_dismissed_list_is_no_choice(self, result: OsascriptResult):
        # Arrange
        provider = AppleScriptDecisionProvider(timeout_seconds=5)

        # Act
        with patch("egress_acp.pep.prompts.run_osascript", return_value=result):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == NoChoiceDismissed()

    def test_allow_always_saves_entered_rule(self):
        # Arrange
        provider = AppleScriptDecisionProvider(timeout_seconds=5)

        # Act
        with patch(
            "egress_acp.pep.prompts.run_osascript",
            side_effect=[OsascriptResult(output="Allow Always"), saved("*.example.com")],
        ) as mock_run:
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == AllowAlways("*.example.com")
        assert f'default answer "{SUGGESTED}"' in mock_run.call_args_list[1][0][0]

    def test_back_from_rule_entry_returns_to_list(self):
        # Arrange
        provider = AppleScriptDecisionProvider(timeout_seconds=5)

        # Act
        with patch(
            "egress_acp.pep.prompts.run_osascript",
            side_effect=[
                OsascriptResult(output="Allow Always"),
                OsascriptResult(cancelled=True),
                OsascriptResult(output="Deny Once"),
            ],
        ):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == DenyOnce()

    def test_empty_rule_is_asked_again(self):
        # Arrange
        provider = AppleScriptDecisionProvider(timeout_seconds=5)

        # Act
        with patch(
            "egress_acp.pep.prompts.run_osascript",
            side_effect=[OsascriptResult(output="Allow Always"), saved(""), saved("ok.com")],
        ):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == AllowAlways("ok.com")

    def test_deny_always_uses_suggested_rule(self):
        # Arrange
        provider = AppleScriptDecisionProvider(timeout_seconds=5)

        # Act
        with patch("egress_acp.pep.prompts.run_osascript", return_value=OsascriptResult(output="Deny Always")):
            outcome = provider.show_prompt(TARGET, SUGGESTED)

        # Assert
        assert outcome == DenyAlways(SUGGESTED)

    def test_osascript_failure_propagates(self):
        # Arrange
        provider = AppleScriptDecisionProvider(timeout_seconds=5)

        # Act & Assert
        with patch("egress_acp.pep.prompts.run_osascript", side_effect=DecisionProviderError("no display")):
            with pytest.raises(DecisionProviderError):
                provider.show_prompt(TARGET, SUGGESTED)


# --- Provider Selection ---


class TestCreateDecisionProvider:
    """Tests for provider selection."""

    def test_terminal(self):
        # Act & Assert
        assert isinstance(create_decision_provider("terminal"), TerminalDecisionProvider)

    def test_auto_on_macos_uses_applescript(self):
        # Act
        with (
            patch("egress_acp.pep.prompts.platform.system", return_value="Darwin"),
            patch("egress_acp.pep.prompts.shutil.which", return_value="/usr/bin/osascript"),
        ):
            provider = create_decision_provider("auto")

        # Assert
        assert isinstance(provider, AppleScriptDecisionProvider)

    def test_auto_elsewhere_uses_terminal(self):
        # Act
        with patch("egress_acp.pep.prompts.platform.system", return_value="Linux"):
            provider = create_decision_provider("auto")

        # Assert
        assert isinstance(provider, TerminalDecisionProvider)

    def test_applescript_without_osascript_raises(self):
        # Act & Assert
        with patch("egress_acp.pep.prompts.platform.system", return_value="Linux"):
            with pytest.raises(ValueError, match="osascript"):
                create_decision_provider("applescript")

    def test_unknown_kind_raises(self):
        # Act & Assert
        with pytest.raises(ValueError, match="Unknown prompt provider"):
            create_decision_provider("carrier-pigeon")  # type: ignore[arg-type]


# --- AppleScript Helpers ---


class TestAppleScriptHelpers:
    """Tests for escaping, record parsing and the osascript runner."""

    def test_escape_quotes_and_backslashes(self):
        # Act
        result = escape_applescript_string('a"b\\c\nd')

        # Assert
        assert result == 'a\\"b\\\\c d'

    def test_parse_record(self):
        # Act
        record = parse_applescript_record('{button returned:"Save", text returned:"*.x.com", gave up:false}')

        # Assert
        assert record == {"button returned": "Save", "text returned": "*.x.com", "gave up": "false"}

    def test_run_returns_stripped_output(self):
        # Arrange
        completed = MagicMock(returncode=0, stdout="Allow Once\n", stderr="")

        # Act
        with patch("egress_acp.pep.applescript.subprocess.run", return_value=completed):
            result = run_osascript("script", timeout=5)

        # Assert
        assert result == OsascriptResult(output="Allow Once")

    def test_run_user_cancel(self):
        # Arrange
        completed = MagicMock(returncode=1, stdout="", stderr="execution error: User canceled. (-128)")

        # Act
        with patch("egress_acp.pep.applescript.subprocess.run", return_value=completed):
            result = run_osascript("script", timeout=5)

        # Assert
        assert result.cancelled is True

    def test_run_timeout(self):
        # Act
        with patch(
            "egress_acp.pep.applescript.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="osascript", timeout=5),
        ):
            result = run_osascript("script", timeout=5)

        # Assert
        assert result.timed_out is True

    def test_run_other_failure_raises(self):
        # Arrange
        completed = MagicMock(returncode=1, stdout="", stderr="syntax error")

        # Act & Assert
        with patch("egress_acp.pep.applescript.subprocess.run", return_value=completed):
            with pytest.raises(DecisionProviderError, match="syntax error"):
                run_osascript("script", timeout=5)

    def test_missing_osascript_raises(self):
        # Act & Assert
        with patch("egress_acp.pep.applescript.subprocess.run", side_effect=FileNotFoundError("osascript")):
            with pytest.raises(DecisionProviderError):
                run_osascript("script", timeout=5)
