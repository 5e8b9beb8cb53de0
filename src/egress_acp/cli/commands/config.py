"""Config command group for egress-acp CLI."""

import json
import sys

import click

from egress_acp.config import AppConfig
from egress_acp.constants import APP_NAME
from egress_acp.utils.config import get_config_path


@click.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
def config_show() -> None:
    """Display the effective configuration as JSON.

    Defaults are shown when no config file exists.
    """
    config_path = get_config_path()
    try:
        loaded = AppConfig.load_or_default(config_path)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    if not config_path.exists():
        click.echo(f"(no config file - showing defaults; run '{APP_NAME} init' to create)", err=True)
    click.echo(json.dumps(loaded.model_dump(mode="json"), indent=2))


@config.command("path")
def config_path_cmd() -> None:
    """Show config file path."""
    path = get_config_path()
    click.echo(str(path))

    if not path.exists():
        click.echo(f"(file does not exist - run '{APP_NAME} init' to create)", err=True)
