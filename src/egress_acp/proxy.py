"""HTTP proxy listener.

One thread per client connection (ThreadingHTTPServer). Each request is
converted into an InboundRequest, run through the Interceptor, and the result
written back:

- Rejected: plain-text body with the interceptor's status
- Forwarded HTTP: upstream status, headers (hop-by-hop stripped) and raw body
- Forwarded CONNECT: "200 Connection established", then bytes are relayed
  both ways until either side closes

Only absolute-form requests ("GET http://host/path") and CONNECT are proxied.
Connections close after every exchange.
"""

from __future__ import annotations

__all__ = [
    "ProxyRequestHandler",
    "ProxyServer",
    "relay",
]

import select
import socket
import ssl
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from egress_acp import __version__
from egress_acp.constants import APP_NAME, TUNNEL_BUFFER_SIZE, TUNNEL_POLL_INTERVAL_SECONDS
from egress_acp.context.request import InboundRequest
from egress_acp.forwarder import ForwardedResponse, Tunnel
from egress_acp.pep.interceptor import InterceptResult, Interceptor
from egress_acp.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()


def relay(client: socket.socket, upstream: socket.socket, initial_data: bytes = b"") -> tuple[int, int]:
    """Copy bytes between two sockets until one side closes.

    Args:
        client: Client-side socket.
        upstream: Destination-side socket.
        initial_data: Bytes already read from upstream, sent to the client
            first.

    Returns:
        Tuple of (bytes client→upstream, bytes upstream→client).
    """
    sent = {client: 0, upstream: 0}
    peers = {client: upstream, upstream: client}
    try:
        if initial_data:
            client.sendall(initial_data)
            sent[upstream] += len(initial_data)

        while True:
            # Decrypted bytes buffered inside an SSL socket are invisible to select
            pending = [s for s in (client, upstream) if isinstance(s, ssl.SSLSocket) and s.pending()]
            if pending:
                readable = pending
            else:
                readable, _, errored = select.select(
                    [client, upstream], [], [client, upstream], TUNNEL_POLL_INTERVAL_SECONDS
                )
                if errored:
                    break
            for sock in readable:
                data = sock.recv(TUNNEL_BUFFER_SIZE)
                if not data:
                    return sent[client], sent[upstream]
                peers[sock].sendall(data)
                sent[sock] += len(data)
    except OSError as e:
        _system_logger.debug({"event": "tunnel_relay_error", "message": str(e)})
    return sent[client], sent[upstream]


class ProxyServer(ThreadingHTTPServer):
    """Threaded proxy listener bound to an Interceptor.

    Args:
        server_address: (host, port) to bind.
        interceptor: Decides every proxied request.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address: tuple[str, int], interceptor: Interceptor) -> None:
        self.interceptor = interceptor
        super().__init__(server_address, ProxyRequestHandler)


class ProxyRequestHandler(BaseHTTPRequestHandler):
    """Turns proxy requests into Interceptor calls."""

    server: ProxyServer
    protocol_version = "HTTP/1.1"
    server_version = f"{APP_NAME}/{__version__}"

    def log_message(self, format: str, *args: object) -> None:
        _system_logger.debug(
            {
                "event": "http_access",
                "message": format % args,
                "client_address": self.client_address[0],
            }
        )

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def do_CONNECT(self) -> None:
        self.close_connection = True
        request = InboundRequest(
            method="CONNECT",
            target=self.path,
            headers=tuple(self.headers.items()),
            client_address=self._peer(),
            request_id=uuid.uuid4().hex[:12],
        )
        result = self._intercept(request)
        if result is None:
            return
        if not isinstance(result.response, Tunnel):
            self._send_text(result.status, result.reason or "")
            return

        tunnel = result.response
        try:
            self.send_response_only(200, "Connection established")
            self.end_headers()
            self.wfile.flush()
            up, down = relay(self.connection, tunnel.sock, tunnel.initial_data)
        finally:
            tunnel.close()
        _system_logger.debug(
            {
                "event": "tunnel_closed",
                "authority": tunnel.authority,
                "bytes_up": up,
                "bytes_down": down,
                "request_id": request.request_id,
            }
        )

    def _handle_http(self) -> None:
        self.close_connection = True

        if "://" not in self.path:
            self._send_text(400, "This is a proxy server; send absolute-form requests or CONNECT")
            return
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            self._send_text(411, "Chunked request bodies are not supported")
            return
        try:
            length = int(self.headers.get("Content-Length", "0"))
            if length < 0:
                raise ValueError(length)
        except ValueError:
            self._send_text(400, "Invalid Content-Length")
            return

        body = self.rfile.read(length) if length else b""
        request = InboundRequest(
            method=self.command,
            target=self.path,
            headers=tuple(self.headers.items()),
            body=body,
            client_address=self._peer(),
            request_id=uuid.uuid4().hex[:12],
        )
        result = self._intercept(request)
        if result is None:
            return
        if not isinstance(result.response, ForwardedResponse):
            self._send_text(result.status, result.reason or "")
            return
        self._send_forwarded(result.response)

    do_GET = do_HEAD = do_POST = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = do_TRACE = _handle_http

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _peer(self) -> str:
        host, port = self.client_address[:2]
        return f"{host}:{port}"

    def _intercept(self, request: InboundRequest) -> InterceptResult | None:
        """Run the interceptor; an unexpected failure rejects with 500."""
        try:
            return self.server.interceptor.handle(request)
        except Exception as e:
            _system_logger.error(
                {
                    "event": "intercept_failed",
                    "message": f"Unhandled error handling {request.method} {request.target}: {e}",
                    "error_type": type(e).__name__,
                    "request_id": request.request_id,
                },
                exc_info=True,
            )
            self._send_text(500, "Internal proxy error")
            return None

    def _send_text(self, status: int, message: str) -> None:
        payload = (message + "\n").encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(payload)

    def _send_forwarded(self, response: ForwardedResponse) -> None:
        self.log_request(response.status_code)
        self.send_response_only(response.status_code, response.reason or None)
        # HEAD, 1xx, 204 and 304 responses carry no body; their headers pass through
        has_body = self.command != "HEAD" and response.status_code >= 200 and response.status_code not in (204, 304)
        for name, value in response.headers:
            if name.lower() == "content-length" and has_body:
                continue
            self.send_header(name, value)
        if has_body:
            self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if has_body and response.body:
            self.wfile.write(response.body)
