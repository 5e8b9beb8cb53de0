"""Start command for egress-acp CLI.

Runs the proxy in the foreground until interrupted.
"""

import signal
import sys

import click

from egress_acp import __version__
from egress_acp.config import AppConfig
from egress_acp.constants import APP_NAME
from egress_acp.exceptions import UpstreamProxyError
from egress_acp.forwarder import TrafficForwarder
from egress_acp.pdp.policy import PolicySnapshot
from egress_acp.pep import (
    DecisionBroker,
    Interceptor,
    PolicyReloader,
    PolicyStore,
    create_decision_provider,
)
from egress_acp.proxy import ProxyServer
from egress_acp.telemetry.audit.decision_logger import create_decision_logger
from egress_acp.telemetry.system.system_logger import configure_system_logger
from egress_acp.utils.config import ensure_directories, get_config_path
from egress_acp.utils.policy import (
    FilePolicyPersistence,
    create_default_policy_file,
    get_policy_path,
    load_policy,
)


def _install_reload_handler(reloader: PolicyReloader) -> None:
    """Reload policy on SIGHUP (Unix only)."""
    if not hasattr(signal, "SIGHUP"):
        return

    def _on_sighup(signum: int, frame: object) -> None:
        result = reloader.reload()
        if result.status == "success":
            click.echo(
                f"Policy reloaded: {result.new_allow_count} allow, {result.new_deny_count} deny",
                err=True,
            )
        else:
            click.echo(f"Policy reload failed, keeping previous policy: {result.error}", err=True)

    signal.signal(signal.SIGHUP, _on_sighup)


@click.command()
@click.option("--host", "-l", default=None, help="Listen address (overrides config)")
@click.option("--port", "-p", type=click.IntRange(1, 65535), default=None, help="Listen port (overrides config)")
@click.option(
    "--provider",
    type=click.Choice(["auto", "terminal", "applescript"]),
    default=None,
    help="Prompt provider (overrides config)",
)
@click.option("--upstream", default=None, help="Default upstream proxy URL (overrides config)")
def start(host: str | None, port: int | None, provider: str | None, upstream: str | None) -> None:
    """Start the proxy server.

    Loads configuration from the OS-appropriate location (defaults if none),
    creates an empty policy if none exists, and listens until Ctrl+C.
    Send SIGHUP to reload the policy file.
    """
    config_path = get_config_path()
    policy_path = get_policy_path()

    try:
        loaded_config = AppConfig.load_or_default(config_path)
        ensure_directories(loaded_config)
        if not policy_path.exists():
            create_default_policy_file(policy_path)
        loaded_policy = load_policy(policy_path)
    except (FileNotFoundError, ValueError, OSError) as e:
        click.echo(f"\nError: {e}", err=True)
        sys.exit(1)

    listen_host = host or loaded_config.listen.host
    listen_port = port or loaded_config.listen.port
    forwarder_config = loaded_config.forwarder

    system_logger = configure_system_logger(
        loaded_config.system_log_path,
        log_level=loaded_config.logging.log_level,
    )
    decision_logger = create_decision_logger(loaded_config.decisions_log_path)

    try:
        decision_provider = create_decision_provider(provider or loaded_config.prompt.provider)  # type: ignore[arg-type]
        forwarder = TrafficForwarder(
            default_proxy=upstream or forwarder_config.default_proxy,
            connect_timeout=forwarder_config.connect_timeout,
            tls_handshake_timeout=forwarder_config.tls_handshake_timeout,
            response_header_timeout=forwarder_config.response_header_timeout,
        )
    except (ValueError, UpstreamProxyError) as e:
        click.echo(f"\nError: {e}", err=True)
        sys.exit(1)

    store = PolicyStore(
        PolicySnapshot.from_config(loaded_policy),
        persistence=FilePolicyPersistence(policy_path),
    )
    broker = DecisionBroker(decision_provider)
    interceptor = Interceptor(store, broker, forwarder, decision_logger=decision_logger)
    _install_reload_handler(PolicyReloader(store, system_logger, policy_path))

    try:
        server = ProxyServer((listen_host, listen_port), interceptor)
    except OSError as e:
        click.echo(f"\nError: cannot listen on {listen_host}:{listen_port}: {e}", err=True)
        forwarder.close()
        sys.exit(1)

    snapshot = store.snapshot()
    click.echo(f"{APP_NAME} v{__version__}", err=True)
    click.echo(f"Policy: {policy_path} ({len(snapshot.allow)} allow, {len(snapshot.deny)} deny)", err=True)
    click.echo(f"Prompt: {type(decision_provider).__name__}", err=True)
    if snapshot.upstream_proxy:
        click.echo(f"Upstream proxy: {snapshot.upstream_proxy}", err=True)
    click.echo(f"Logs: {loaded_config.log_dir}", err=True)
    click.echo("-" * 50, err=True)
    click.echo(f"Proxy listening on http://{listen_host}:{listen_port}", err=True)

    system_logger.info(
        {
            "event": "proxy_started",
            "listen": f"{listen_host}:{listen_port}",
            "allow_count": len(snapshot.allow),
            "deny_count": len(snapshot.deny),
            "version": __version__,
        }
    )

    with broker:
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            click.echo("\nShutting down...", err=True)
        finally:
            server.server_close()
            forwarder.close()
            system_logger.info({"event": "proxy_stopped"})
