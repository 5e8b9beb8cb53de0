"""Policy command group for egress-acp CLI.

Provides policy inspection and editing subcommands. Edits go to the policy
file; a running proxy picks them up on SIGHUP.
"""

import json
import sys
from pathlib import Path
from typing import Literal

import click

from egress_acp.constants import APP_NAME
from egress_acp.exceptions import UpstreamProxyError
from egress_acp.pdp.matcher import is_valid_pattern
from egress_acp.pdp.policy import PolicyConfig, create_default_policy, validate_upstream_url
from egress_acp.utils.policy import get_policy_path, load_policy, save_policy

RELOAD_HINT = "Send SIGHUP to a running proxy to apply (kill -HUP <pid>)."

path_option = click.option(
    "--path",
    "-p",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to policy file (default: OS config location)",
)


def _load_or_exit(path: Path, create_missing: bool = False) -> PolicyConfig:
    """Load the policy, exiting 1 with the error on failure."""
    try:
        return load_policy(path)
    except FileNotFoundError as e:
        if create_missing:
            return create_default_policy()
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


def _save_or_exit(policy_config: PolicyConfig, path: Path) -> None:
    try:
        save_policy(policy_config, path)
    except OSError as e:
        click.echo(f"✗ Could not save policy to {path}: {e}", err=True)
        sys.exit(1)


def _add_rule(kind: Literal["allow", "deny"], pattern: str, path: Path | None) -> None:
    if not is_valid_pattern(pattern):
        click.echo(f"✗ Invalid pattern: {pattern!r}", err=True)
        sys.exit(1)

    policy_path = path or get_policy_path()
    current = _load_or_exit(policy_path, create_missing=True)
    key = "allow_always" if kind == "allow" else "deny_always"
    patterns: list[str] = getattr(current, key)

    if pattern in patterns:
        click.echo(f"Already in {key}: {pattern}")
        return

    _save_or_exit(current.model_copy(update={key: [*patterns, pattern]}), policy_path)
    click.echo(f"✓ Added to {key}: {pattern}")
    click.echo(RELOAD_HINT)


@click.group()
def policy() -> None:
    """Policy management commands."""
    pass


@policy.command("path")
def policy_path_cmd() -> None:
    """Show policy file path.

    Displays the OS-appropriate policy file location.
    """
    path = get_policy_path()
    click.echo(str(path))

    if not path.exists():
        click.echo(f"(file does not exist - run '{APP_NAME} init' to create)", err=True)


@policy.command("show")
@path_option
@click.option("--json", "as_json", is_flag=True, help="Print the raw policy document")
def policy_show(path: Path | None, as_json: bool) -> None:
    """Display the allow and deny lists."""
    policy_config = _load_or_exit(path or get_policy_path())

    if as_json:
        click.echo(json.dumps(policy_config.model_dump(mode="json"), indent=2))
        return

    click.echo(click.style("Deny (checked first):", bold=True))
    for pattern in policy_config.deny_always or ["(none)"]:
        click.echo(f"  {pattern}")
    click.echo(click.style("Allow:", bold=True))
    for pattern in policy_config.allow_always or ["(none)"]:
        click.echo(f"  {pattern}")
    click.echo(click.style("Upstream proxy:", bold=True) + f" {policy_config.upstream_proxy or '(default routing)'}")


@policy.command("validate")
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to policy file (default: OS config location)",
)
def policy_validate(path: Path | None) -> None:
    """Validate policy file.

    Checks the policy file for:
    - Valid JSON syntax
    - Schema validation (known keys, list types)
    - Well-formed glob patterns
    - http/https upstream proxy URL

    Exit codes:
        0: Policy is valid
        1: Policy is invalid or not found
    """
    policy_path = path or get_policy_path()

    policy_config = _load_or_exit(policy_path)
    allow_count = len(policy_config.allow_always)
    deny_count = len(policy_config.deny_always)
    click.echo(f"✓ Policy valid: {policy_path}")
    click.echo(f"  {allow_count} allow rule{'s' if allow_count != 1 else ''}")
    click.echo(f"  {deny_count} deny rule{'s' if deny_count != 1 else ''}")
    click.echo(f"  Upstream proxy: {policy_config.upstream_proxy or 'none'}")


@policy.command("allow")
@click.argument("pattern")
@path_option
def policy_allow(pattern: str, path: Path | None) -> None:
    """Add PATTERN to the allow list."""
    _add_rule("allow", pattern, path)


@policy.command("deny")
@click.argument("pattern")
@path_option
def policy_deny(pattern: str, path: Path | None) -> None:
    """Add PATTERN to the deny list."""
    _add_rule("deny", pattern, path)


@policy.command("remove")
@click.argument("pattern")
@path_option
def policy_remove(pattern: str, path: Path | None) -> None:
    """Remove PATTERN from both lists."""
    policy_path = path or get_policy_path()
    current = _load_or_exit(policy_path)

    allow = [p for p in current.allow_always if p != pattern]
    deny = [p for p in current.deny_always if p != pattern]
    if len(allow) == len(current.allow_always) and len(deny) == len(current.deny_always):
        click.echo(f"✗ Pattern not found: {pattern}", err=True)
        sys.exit(1)

    _save_or_exit(current.model_copy(update={"allow_always": allow, "deny_always": deny}), policy_path)
    click.echo(f"✓ Removed: {pattern}")
    click.echo(RELOAD_HINT)


@policy.command("upstream")
@click.argument("url", required=False)
@click.option("--clear", is_flag=True, help="Remove the upstream proxy")
@path_option
def policy_upstream(url: str | None, clear: bool, path: Path | None) -> None:
    """Show, set (URL) or clear the upstream proxy for allowed traffic."""
    policy_path = path or get_policy_path()

    if url and clear:
        click.echo("✗ Pass either URL or --clear, not both", err=True)
        sys.exit(1)

    if not url and not clear:
        current = _load_or_exit(policy_path)
        click.echo(current.upstream_proxy or "(default routing)")
        return

    current = _load_or_exit(policy_path, create_missing=True)
    new_url: str | None = None
    if url:
        try:
            new_url = validate_upstream_url(url)
        except UpstreamProxyError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(1)

    _save_or_exit(current.model_copy(update={"upstream_proxy": new_url}), policy_path)
    click.echo(f"✓ Upstream proxy: {new_url}" if new_url else "✓ Upstream proxy cleared")
    click.echo(RELOAD_HINT)
