"""Main CLI entry point for egress-acp.

Defines the CLI group and registers all subcommands.

Commands:
    init    - Write default configuration and an empty policy
    start   - Run the proxy in the foreground
    config  - Configuration commands
        show - Display effective configuration
        path - Show config file path
    policy  - Policy commands
        path, show, validate, allow, deny, remove, upstream

Usage:
    egress-acp -h, --help      Show help message
    egress-acp -v, --version   Show version
    egress-acp init            Initialize configuration
    egress-acp start           Start proxy server
    egress-acp policy show     Display the rule lists

Subcommand help:
    egress-acp COMMAND -h      Show help for a specific command
"""

import sys

import click

from egress_acp import __version__
from egress_acp.constants import APP_NAME

from .commands.config import config
from .commands.init import init
from .commands.policy import policy
from .commands.start import start


class ReorderedGroup(click.Group):
    """Custom group that shows commands before custom help text."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Add extra help after commands section."""
        formatter.write(
            f"""
Quick Start:
  {APP_NAME} init                          Write default config and empty policy
  {APP_NAME} start                         Listen on localhost:3128
  export HTTP_PROXY=http://localhost:3128 HTTPS_PROXY=http://localhost:3128

Managing Rules:
  {APP_NAME} policy allow '*.github.com'   Always allow a host pattern
  {APP_NAME} policy deny 'tracker.example.com'
  {APP_NAME} policy upstream http://proxy.corp:8080
  kill -HUP <pid>                          Reload policy in a running proxy

Patterns:
  *      any characters except '/'
  ?      one character except '/'
  [a-z]  character class
  /*     at the end of a pattern: everything below that path
  A pattern without '/' also matches the host alone (any path).
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """egress-acp: policy-enforcing proxy for outbound network access."""
    if version:
        click.echo(f"{APP_NAME} {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(init)
cli.add_command(start)
cli.add_command(config)
cli.add_command(policy)


def main() -> None:
    """CLI entry point."""
    cli()
