"""Init command for egress-acp CLI.

Writes the configuration file and an empty policy file.
"""

import sys
from pathlib import Path

import click

from egress_acp.config import AppConfig, ListenConfig, LoggingConfig, PromptConfig
from egress_acp.constants import APP_NAME, DEFAULT_LISTEN_PORT
from egress_acp.pdp import create_default_policy
from egress_acp.utils.config import ensure_directories, get_config_path
from egress_acp.utils.file_helpers import get_default_log_dir
from egress_acp.utils.policy import get_policy_path, save_policy


@click.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite existing config and policy")
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Base directory for logs (default: OS log directory)",
)
@click.option("--port", "-p", type=click.IntRange(1, 65535), default=DEFAULT_LISTEN_PORT, show_default=True)
@click.option(
    "--provider",
    type=click.Choice(["auto", "terminal", "applescript"]),
    default="auto",
    show_default=True,
    help="How undecided requests are prompted",
)
def init(force: bool, log_dir: Path | None, port: int, provider: str) -> None:
    """Initialize configuration and an empty policy.

    The empty policy allows nothing and denies nothing, so every request is
    prompted until rules accumulate.
    """
    config_path = get_config_path()
    policy_path = get_policy_path()

    if config_path.exists() and not force:
        click.echo(f"Error: config already exists at {config_path}", err=True)
        click.echo("Use --force to overwrite.", err=True)
        sys.exit(1)

    config = AppConfig(
        listen=ListenConfig(port=port),
        prompt=PromptConfig(provider=provider),  # type: ignore[arg-type]
        logging=LoggingConfig(log_dir=str((log_dir or get_default_log_dir()).expanduser())),
    )

    try:
        ensure_directories(config)
        config.save_to_file(config_path)
        if force or not policy_path.exists():
            save_policy(create_default_policy(), policy_path)
            policy_note = "empty policy"
        else:
            policy_note = "existing policy kept"
    except OSError as e:
        click.echo(f"Error: could not write configuration: {e}", err=True)
        sys.exit(1)

    click.echo(f"Configuration saved to {config_path}")
    click.echo(f"Policy at {policy_path} ({policy_note})")
    click.echo(f"Logs in {config.log_dir}")
    click.echo(f"\nRun '{APP_NAME} start' and point HTTP_PROXY/HTTPS_PROXY at http://localhost:{port}")
