"""Traffic forwarder - send allowed requests to their destination.

Plain HTTP requests are sent with httpx. CONNECT requests get a raw TCP
tunnel, either straight to the destination or through an upstream HTTP(S)
proxy using a CONNECT handshake of our own.

Routing (which upstream proxy, which timeouts) is one process-wide value. It
is swapped under a lock, together with the httpx client built for it. Each
forward() captures both in one locked read and uses them for its whole
exchange, so a concurrent set_upstream() never changes routing mid-flight.
A client replaced by a routing change is closed once the last forward that
captured it has finished.
"""

from __future__ import annotations

__all__ = [
    "ForwardedResponse",
    "RoutingConfig",
    "TrafficForwarder",
    "Tunnel",
]

import base64
import socket
import ssl
import threading
import urllib.request
from dataclasses import dataclass, field, replace
from typing import Literal
from urllib.parse import unquote, urlsplit

import httpx

from egress_acp.constants import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_RESPONSE_HEADER_TIMEOUT_SECONDS,
    DEFAULT_TLS_HANDSHAKE_TIMEOUT_SECONDS,
    HOP_BY_HOP_HEADERS,
    MAX_CONNECT_RESPONSE_HEAD_BYTES,
    SUPPORTED_UPSTREAM_SCHEMES,
)
from egress_acp.context.request import InboundRequest
from egress_acp.exceptions import ForwardError
from egress_acp.pdp.policy import validate_upstream_url
from egress_acp.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()


# =============================================================================
# Routing
# =============================================================================


@dataclass(frozen=True)
class RoutingConfig:
    """Where and how to send allowed traffic.

    Attributes:
        proxy: Upstream proxy URL, or None to connect directly (environment
            proxy variables are honoured in that case).
        source: "default" for startup routing, "override" for a policy
            upstream_proxy.
        connect_timeout: TCP connect limit in seconds.
        tls_handshake_timeout: TLS handshake limit in seconds.
        response_header_timeout: Limit on waiting for response data.
    """

    proxy: str | None = None
    source: Literal["default", "override"] = "default"
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
    tls_handshake_timeout: float = DEFAULT_TLS_HANDSHAKE_TIMEOUT_SECONDS
    response_header_timeout: float = DEFAULT_RESPONSE_HEADER_TIMEOUT_SECONDS

    def httpx_timeout(self) -> httpx.Timeout:
        """httpx covers TCP connect and TLS handshake in one connect phase."""
        return httpx.Timeout(
            connect=self.connect_timeout + self.tls_handshake_timeout,
            read=self.response_header_timeout,
            write=self.response_header_timeout,
            pool=self.connect_timeout,
        )


# =============================================================================
# Results
# =============================================================================


@dataclass
class ForwardedResponse:
    """Buffered response from the destination.

    `body` holds the raw bytes as received (content encoding untouched).
    """

    status_code: int
    reason: str
    headers: list[tuple[str, str]]
    body: bytes
    routing: RoutingConfig
    http_version: str = "HTTP/1.1"


@dataclass
class Tunnel:
    """Open byte stream to a CONNECT destination.

    Attributes:
        sock: Connected socket (blocking, no timeout).
        authority: "host:port" that was requested.
        routing: Routing used to open the tunnel.
        via_proxy: Upstream proxy the tunnel goes through, if any.
        initial_data: Bytes the upstream proxy sent after its CONNECT reply;
            they belong to the tunnelled stream.
    """

    sock: socket.socket
    authority: str
    routing: RoutingConfig
    via_proxy: str | None = None
    initial_data: bytes = field(default=b"", repr=False)

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


# =============================================================================
# Forwarder
# =============================================================================


def _strip_hop_by_hop(headers: tuple[tuple[str, str], ...] | list[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop hop-by-hop headers, including any named in Connection."""
    named = set()
    for name, value in headers:
        if name.lower() == "connection":
            named.update(token.strip().lower() for token in value.split(","))
    return [(name, value) for name, value in headers if name.lower() not in HOP_BY_HOP_HEADERS | named]


def _split_authority(authority: str, default_port: int = 443) -> tuple[str, int]:
    try:
        parts = urlsplit(f"//{authority}")
        port = parts.port or default_port
    except ValueError as e:
        raise ForwardError(f"Invalid CONNECT authority {authority!r}: {e}") from e
    if not parts.hostname:
        raise ForwardError(f"Invalid CONNECT authority {authority!r}: missing host")
    return parts.hostname, port


def _environment_proxy(hostname: str) -> str | None:
    """HTTPS proxy from the environment for a tunnel, honouring no_proxy."""
    proxies = urllib.request.getproxies_environment()
    proxy = proxies.get("https")
    if not proxy or urllib.request.proxy_bypass_environment(hostname, proxies):
        return None
    if urlsplit(proxy).scheme.lower() not in SUPPORTED_UPSTREAM_SCHEMES:
        return None
    return proxy


class TrafficForwarder:
    """Forwards allowed requests, applying the current routing.

    Args:
        default_proxy: Proxy used when no override is set (None: direct).
        connect_timeout: TCP connect limit in seconds.
        tls_handshake_timeout: TLS handshake limit in seconds.
        response_header_timeout: Response wait limit in seconds.
        transport: httpx transport for plain HTTP. When given, it replaces
            the network (and proxy) layer entirely; tests use
            httpx.MockTransport here.
    """

    def __init__(
        self,
        default_proxy: str | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        tls_handshake_timeout: float = DEFAULT_TLS_HANDSHAKE_TIMEOUT_SECONDS,
        response_header_timeout: float = DEFAULT_RESPONSE_HEADER_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if default_proxy is not None:
            default_proxy = validate_upstream_url(default_proxy)
        self._default = RoutingConfig(
            proxy=default_proxy,
            source="default",
            connect_timeout=connect_timeout,
            tls_handshake_timeout=tls_handshake_timeout,
            response_header_timeout=response_header_timeout,
        )
        self._transport = transport
        self._lock = threading.Lock()
        self._routing = self._default
        self._client = self._build_client(self._default)
        self._retired: list[httpx.Client] = []
        # Forwards in flight per client
        self._leases: dict[httpx.Client, int] = {}
        self._closed = False

    @property
    def routing(self) -> RoutingConfig:
        with self._lock:
            return self._routing

    def _build_client(self, routing: RoutingConfig) -> httpx.Client:
        if self._transport is not None:
            return httpx.Client(
                transport=self._transport,
                timeout=routing.httpx_timeout(),
                trust_env=False,
                follow_redirects=False,
            )
        return httpx.Client(
            proxy=routing.proxy,
            timeout=routing.httpx_timeout(),
            trust_env=routing.proxy is None,
            follow_redirects=False,
        )

    def _install(self, routing: RoutingConfig) -> bool:
        with self._lock:
            if self._closed:
                raise RuntimeError("TrafficForwarder is closed")
            if routing == self._routing:
                return False
            previous: httpx.Client | None = self._client
            self._client = self._build_client(routing)
            self._routing = routing
            if self._leases.get(previous):
                self._retired.append(previous)
                previous = None
        if previous is not None:
            previous.close()
        return True

    def _release(self, client: httpx.Client) -> None:
        """End one forward's use of a client; close it if retired and idle."""
        with self._lock:
            self._leases[client] -= 1
            if self._leases[client]:
                return
            del self._leases[client]
            if client not in self._retired:
                return
            self._retired.remove(client)
        client.close()

    def set_upstream(self, url: str) -> RoutingConfig:
        """Route traffic through `url` with the configured timeouts.

        Raises:
            UpstreamProxyError: If the URL is not a valid http(s) proxy URL.
        """
        routing = replace(self._default, proxy=validate_upstream_url(url), source="override")
        if self._install(routing):
            _system_logger.info(
                {
                    "event": "routing_changed",
                    "message": f"Routing traffic via upstream proxy {routing.proxy}",
                    "proxy": routing.proxy,
                    "source": routing.source,
                }
            )
        return routing

    def clear_upstream(self) -> RoutingConfig:
        """Restore the default routing."""
        if self._install(self._default):
            _system_logger.info(
                {
                    "event": "routing_changed",
                    "message": "Restored default routing",
                    "proxy": self._default.proxy,
                    "source": self._default.source,
                }
            )
        return self._default

    def close(self) -> None:
        """Close all httpx clients. Further forwards fail."""
        with self._lock:
            self._closed = True
            clients = [self._client, *self._retired]
            self._retired = []
        for client in clients:
            client.close()

    def forward(self, request: InboundRequest) -> ForwardedResponse | Tunnel:
        """Send a request (or open a tunnel) using the current routing.

        Raises:
            ForwardError: On connect failure, timeout or a bad upstream reply.
        """
        with self._lock:
            if self._closed:
                raise ForwardError("Forwarder is shut down")
            routing = self._routing
            client = self._client
            self._leases[client] = self._leases.get(client, 0) + 1

        try:
            if request.is_tunnel:
                return self._open_tunnel(request.target, routing)
            return self._send(client, request, routing)
        finally:
            self._release(client)

    # -------------------------------------------------------------------------
    # Plain HTTP
    # -------------------------------------------------------------------------

    def _send(
        self,
        client: httpx.Client,
        request: InboundRequest,
        routing: RoutingConfig,
    ) -> ForwardedResponse:
        try:
            # Built directly so no client default headers are added
            outbound = httpx.Request(
                request.method,
                request.target,
                headers=_strip_hop_by_hop(request.headers),
                content=request.body or None,
            )
            response = client.send(outbound, stream=True)
            try:
                body = b"".join(response.iter_raw())
            finally:
                response.close()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ForwardError(f"{type(e).__name__}: {e}") from e

        return ForwardedResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            headers=_strip_hop_by_hop(
                [(k.decode("latin-1"), v.decode("latin-1")) for k, v in response.headers.raw]
            ),
            body=body,
            routing=routing,
            http_version=response.http_version,
        )

    # -------------------------------------------------------------------------
    # CONNECT tunnels
    # -------------------------------------------------------------------------

    def _open_tunnel(self, authority: str, routing: RoutingConfig) -> Tunnel:
        hostname, port = _split_authority(authority)
        proxy = routing.proxy
        if proxy is None and self._transport is None:
            proxy = _environment_proxy(hostname)

        try:
            if proxy is None:
                sock = socket.create_connection((hostname, port), timeout=routing.connect_timeout)
                sock.settimeout(None)
                return Tunnel(sock=sock, authority=authority, routing=routing)
            return self._tunnel_via_proxy(authority, proxy, routing)
        except OSError as e:
            raise ForwardError(f"Cannot open tunnel to {authority}: {e}") from e

    def _tunnel_via_proxy(self, authority: str, proxy: str, routing: RoutingConfig) -> Tunnel:
        parts = urlsplit(proxy)
        default_port = 443 if parts.scheme.lower() == "https" else 80
        proxy_host = parts.hostname or ""
        sock: socket.socket = socket.create_connection(
            (proxy_host, parts.port or default_port),
            timeout=routing.connect_timeout,
        )
        try:
            if parts.scheme.lower() == "https":
                sock.settimeout(routing.tls_handshake_timeout)
                sock = ssl.create_default_context().wrap_socket(sock, server_hostname=proxy_host)

            lines = [f"CONNECT {authority} HTTP/1.1", f"Host: {authority}"]
            if parts.username is not None:
                credentials = f"{unquote(parts.username)}:{unquote(parts.password or '')}"
                token = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
                lines.append(f"Proxy-Authorization: Basic {token}")
            sock.settimeout(routing.response_header_timeout)
            sock.sendall(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))

            head, rest = _read_response_head(sock)
            status_line = head.split(b"\r\n", 1)[0].decode("latin-1")
            fields = status_line.split(None, 2)
            if len(fields) < 2 or not fields[1].isdigit():
                raise ForwardError(f"Malformed CONNECT reply from upstream proxy: {status_line!r}")
            if not 200 <= int(fields[1]) < 300:
                raise ForwardError(f"Upstream proxy refused CONNECT to {authority}: {status_line}")

            sock.settimeout(None)
        except BaseException:
            sock.close()
            raise

        return Tunnel(
            sock=sock,
            authority=authority,
            routing=routing,
            via_proxy=proxy,
            initial_data=rest,
        )


def _read_response_head(sock: socket.socket) -> tuple[bytes, bytes]:
    """Read up to the blank line ending a response head.

    Returns:
        Tuple of (head without the terminator, bytes read past it).
    """
    data = b""
    while b"\r\n\r\n" not in data:
        if len(data) > MAX_CONNECT_RESPONSE_HEAD_BYTES:
            raise ForwardError("Upstream proxy CONNECT reply too large")
        chunk = sock.recv(4096)
        if not chunk:
            raise ForwardError("Upstream proxy closed the connection during CONNECT")
        data += chunk
    head, _, rest = data.partition(b"\r\n\r\n")
    return head, rest
