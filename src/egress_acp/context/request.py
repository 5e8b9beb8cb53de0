"""Inbound request model.

The HTTP listener converts each proxied request into an InboundRequest so the
interceptor and forwarder never touch the socket layer directly.
"""

from __future__ import annotations

__all__ = [
    "InboundRequest",
]

from dataclasses import dataclass, field

from egress_acp.context.target import tunnel_target


@dataclass(frozen=True)
class InboundRequest:
    """A request received by the proxy listener.

    Attributes:
        method: HTTP method ("CONNECT" for tunnels).
        target: Request target as received: an absolute URI for normal proxy
            requests, an authority ("host:port") for CONNECT.
        headers: Request headers in arrival order.
        body: Request body (empty for CONNECT and bodiless requests).
        client_address: Peer address of the client connection, if known.
        request_id: Correlation ID for logs.
    """

    method: str
    target: str
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
    client_address: str | None = None
    request_id: str = field(default="unknown")

    @property
    def is_tunnel(self) -> bool:
        """True for CONNECT requests."""
        return self.method.upper() == "CONNECT"

    @property
    def raw_target(self) -> str:
        """The URL the rules are evaluated against.

        CONNECT requests carry only an authority, so a pseudo-target
        "https://<authority>" is synthesized for them.
        """
        if self.is_tunnel:
            return tunnel_target(self.target)
        return self.target
