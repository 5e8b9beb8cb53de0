"""Command-line interface for egress-acp.

Provides commands for initializing configuration, starting the proxy server,
and managing configuration and policy.
"""

from .main import cli, main

__all__ = ["cli", "main"]
