"""Tests for glob matching and rule evaluation.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

import pytest

from egress_acp.context.target import parse_target
from egress_acp.pdp import Decision, PolicySnapshot, classify, evaluate, is_valid_pattern
from egress_acp.pdp.matcher import escape_pattern, match_glob, match_pattern


# --- Fixtures ---


def snapshot(allow: list[str] | None = None, deny: list[str] | None = None) -> PolicySnapshot:
    return PolicySnapshot(allow=tuple(allow or ()), deny=tuple(deny or ()), upstream_proxy=None)


# --- Glob Syntax ---


class TestMatchGlob:
    """Tests for single-string glob matching."""

    @pytest.mark.parametrize(
        "pattern,value,expected",
        [
            ("example.com", "example.com", True),
            ("example.com", "example.org", False),
            ("*.example.com", "sub.example.com", True),
            ("*.example.com", "a.b.example.com", True),
            ("*.example.com", "example.com", False),
            ("*", "a/b", False),
            ("ex?mple.com", "example.com", True),
            ("ex?mple.com", "ex/mple.com", False),
            ("[a-c]at.com", "bat.com", True),
            ("[a-c]at.com", "rat.com", False),
            ("[^a-c]at.com", "rat.com", True),
            ("[^a-c]at.com", "cat.com", False),
            ("a[^x]b", "a/b", False),
            ("\\*.com", "*.com", True),
            ("\\*.com", "x.com", False),
        ],
    )
    def test_glob_semantics(self, pattern: str, value: str, expected: bool):
        # Act
        result = match_glob(pattern, value)

        # Assert
        assert result is expected

    def test_trailing_slash_star_matches_rest_of_path(self):
        # Act & Assert
        assert match_glob("example.com/*", "example.com/") is True
        assert match_glob("example.com/*", "example.com/a/b/c") is True
        assert match_glob("example.com/*", "example.com") is False

    def test_inner_star_stops_at_separator(self):
        # Act & Assert
        assert match_glob("example.com/*/x", "example.com/a/x") is True
        assert match_glob("example.com/*/x", "example.com/a/b/x") is False

    @pytest.mark.parametrize("pattern", ["[abc", "[z-a]", "trailing\\", "[]"])
    def test_malformed_pattern_never_matches(self, pattern: str):
        # Act & Assert
        assert match_glob(pattern, pattern) is False
        assert is_valid_pattern(pattern) is False

    def test_empty_pattern_is_invalid(self):
        # Act & Assert
        assert is_valid_pattern("") is False

    @pytest.mark.parametrize("pattern", ["example.com", "*.example.com", "example.com/*", "[a-z]*.io"])
    def test_well_formed_patterns_are_valid(self, pattern: str):
        # Act & Assert
        assert is_valid_pattern(pattern) is True


# --- Target Matching ---


class TestMatchPattern:
    """Tests for matching patterns against parsed targets."""

    def test_host_only_pattern_covers_every_path(self):
        # Arrange
        target = parse_target("http://example.com/some/deep/path")

        # Act & Assert
        assert match_pattern("example.com", target) is True

    def test_host_only_pattern_matches_trailing_slash(self):
        # Arrange
        target = parse_target("http://example.com/")

        # Act & Assert
        assert match_pattern("example.com", target) is True

    def test_path_pattern_does_not_fall_back_to_host(self):
        # Arrange
        target = parse_target("http://example.com")

        # Act & Assert
        assert match_pattern("example.com/*", target) is False

    def test_port_is_part_of_host(self):
        # Arrange
        target = parse_target("http://blocked.com:8080/path")

        # Act & Assert
        assert match_pattern("blocked.com:8080", target) is True
        assert match_pattern("blocked.com", target) is False

    def test_star_pattern_matches_any_host(self):
        # Arrange
        target = parse_target("http://domain.com/path")

        # Act & Assert
        assert match_pattern("*", target) is True

    def test_star_slash_path_pattern(self):
        # Arrange
        target = parse_target("http://domain.com/path")

        # Act & Assert
        assert match_pattern("*/path", target) is True

    def test_escaped_ipv6_host_matches_itself(self):
        # Arrange
        target = parse_target("http://[::1]:8080/x")

        # Act
        pattern = escape_pattern(target.host)

        # Assert
        assert pattern == "\\[::1\\]:8080"
        assert is_valid_pattern(pattern) is True
        assert match_pattern(pattern, target) is True
        assert match_pattern(target.host, target) is False

    @pytest.mark.parametrize("text", ["a*b", "a?b", "ab\\", "[x]"])
    def test_escaped_text_is_literal(self, text: str):
        # Act
        pattern = escape_pattern(text)

        # Assert
        assert match_glob(pattern, text) is True
        assert match_glob(pattern, "axb") is False


# --- Evaluation ---


class TestEvaluate:
    """Tests for deny-first evaluation of parsed targets."""

    @pytest.mark.parametrize(
        "allow,deny,url,expected",
        [
            ([], ["blocked.com"], "http://blocked.com/path", Decision.DENIED),
            ([], ["*.blocked.com"], "http://sub.blocked.com", Decision.DENIED),
            ([], ["example.com/private/*"], "http://example.com/private/secret", Decision.DENIED),
            ([], ["blocked.com:8080"], "http://blocked.com:8080/path", Decision.DENIED),
            (["allowed.com"], ["allowed.com"], "http://allowed.com", Decision.DENIED),
            (["example.com/*"], ["example.com/deny/*"], "http://example.com/deny/this", Decision.DENIED),
            (["example.com/*"], ["example.com/deny/*"], "http://example.com/allow/this", Decision.ALLOWED),
            (["allowed.com"], [], "http://allowed.com/path", Decision.ALLOWED),
            (["*.allowed.com"], [], "http://sub.allowed.com", Decision.ALLOWED),
            (["example.com/public/*"], [], "http://example.com/public/resource", Decision.ALLOWED),
            (["good.com"], ["bad.com"], "http://good.com/index", Decision.ALLOWED),
            (["allowed.com"], ["denied.com"], "http://other.com", Decision.UNDECIDED),
            (["example.com/specific"], [], "http://example.com/other", Decision.UNDECIDED),
            ([], ["example.com/specific"], "http://example.com/other", Decision.UNDECIDED),
            ([], [], "http://anything.com", Decision.UNDECIDED),
            (["*.domain.com"], [], "http://sub.sub.domain.com", Decision.ALLOWED),
            (["*.domain.com"], [], "http://domain.com", Decision.UNDECIDED),
            (["example.com/*"], [], "http://example.com", Decision.UNDECIDED),
            (["example.com/*"], [], "http://example.com/", Decision.ALLOWED),
            (["example.com/query"], [], "http://example.com/query?param=val", Decision.ALLOWED),
            ([], ["example.com/frag"], "http://example.com/frag#section", Decision.DENIED),
            (["secure.com/*"], [], "https://secure.com/page", Decision.ALLOWED),
            ([], ["block.secure.com"], "https://block.secure.com", Decision.DENIED),
        ],
    )
    def test_rule_scenarios(self, allow: list[str], deny: list[str], url: str, expected: Decision):
        # Arrange
        target = parse_target(url)

        # Act
        decision = evaluate(deny, allow, target)

        # Assert
        assert decision == expected

    def test_deny_wins_regardless_of_specificity(self):
        # Arrange
        target = parse_target("http://api.example.com/v1/users")

        # Act
        decision = evaluate(["*.example.com"], ["api.example.com/v1/users"], target)

        # Assert
        assert decision == Decision.DENIED


# --- Classification ---


class TestClassify:
    """Tests for classifying raw targets against a snapshot."""

    def test_unparseable_target_is_denied(self):
        # Act
        result = classify("http://%", snapshot(allow=["*"]))

        # Assert
        assert result.decision == Decision.DENIED
        assert result.target is None
        assert result.error is not None

    def test_reports_matched_deny_pattern(self):
        # Act
        result = classify("http://blocked.com/x", snapshot(deny=["blocked.com"]))

        # Assert
        assert result.decision == Decision.DENIED
        assert result.matched_pattern == "blocked.com"
        assert result.matched_list == "deny"

    def test_reports_matched_allow_pattern(self):
        # Act
        result = classify("https://sub.allowed.com", snapshot(allow=["*.allowed.com"]))

        # Assert
        assert result.decision == Decision.ALLOWED
        assert result.matched_pattern == "*.allowed.com"
        assert result.matched_list == "allow"

    def test_undecided_keeps_parsed_target(self):
        # Act
        result = classify("http://anything.com", snapshot())

        # Assert
        assert result.decision == Decision.UNDECIDED
        assert result.target is not None
        assert result.target.host == "anything.com"
        assert result.matched_pattern is None

    def test_tunnel_pseudo_target_is_matched_by_host(self):
        # Act
        result = classify("https://example.com:443", snapshot(allow=["example.com:443"]))

        # Assert
        assert result.decision == Decision.ALLOWED
