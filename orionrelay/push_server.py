from __future__ import annotations

import logging
import re
import socket
import threading
import time
from http import HTTPStatus
from http.server import ThreadingHTTPServer
from typing import Any

from websockets.http11 import Request, Response
from websockets.sync.server import Server, ServerConnection, serve

from .relay import Relay
from .session import role_for_path, run_session

logger = logging.getLogger(__name__)

UPGRADE_PEEK_LIMIT = 16 * 1024
UPGRADE_PEEK_TIMEOUT_S = 5.0

_UPGRADE_HEADER = re.compile(rb"^upgrade:[ \t]*websocket[ \t]*\r?$", re.IGNORECASE | re.MULTILINE)


def wants_websocket(sock: socket.socket, *, timeout_s: float = UPGRADE_PEEK_TIMEOUT_S) -> bool:
    """Peek at the request head without consuming it; true for a GET upgrade."""

    deadline = time.monotonic() + timeout_s
    seen = 0
    sock.settimeout(timeout_s)
    try:
        while True:
            head = sock.recv(UPGRADE_PEEK_LIMIT, socket.MSG_PEEK)
            if not head:
                return False
            if b"\r\n\r\n" in head or len(head) >= UPGRADE_PEEK_LIMIT:
                break
            if time.monotonic() >= deadline:
                break
            if len(head) == seen:
                time.sleep(0.01)
            seen = len(head)
    except OSError:
        return False
    finally:
        sock.settimeout(None)
    head = head.split(b"\r\n\r\n", 1)[0]
    return head.startswith(b"GET ") and _UPGRADE_HEADER.search(head) is not None


class RelayHTTPServer(ThreadingHTTPServer):
    """HTTP server that hands WebSocket upgrades on the same port to ``push_handler``."""

    daemon_threads = True
    push_handler: Any = None

    def process_request_thread(self, request: Any, client_address: Any) -> None:
        if self.push_handler is not None and wants_websocket(request):
            try:
                self.push_handler(request, client_address)
            except Exception:
                self.handle_error(request, client_address)
            finally:
                self.shutdown_request(request)
            return
        super().process_request_thread(request, client_address)


def _reject_unknown_path(connection: ServerConnection, request: Request) -> Response | None:
    if role_for_path(request.path) is None:
        return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
    return None


class PushServer:
    """WebSocket endpoint for live peers, one thread per connection.

    With ``http_server`` the endpoint shares the HTTP listener and only its
    per-connection handler is used. Otherwise it binds ``host``/``port``.
    """

    def __init__(
        self,
        relay: Relay,
        *,
        keepalive_interval_s: float,
        keepalive_timeout_s: float,
        http_server: RelayHTTPServer | None = None,
        host: str = "0.0.0.0",
        port: int = 0,
    ) -> None:
        self.relay = relay
        self.keepalive_interval_s = keepalive_interval_s
        self.keepalive_timeout_s = keepalive_timeout_s
        options: dict[str, Any] = {
            "process_request": _reject_unknown_path,
            # KeepAlive threads own liveness probing.
            "ping_interval": None,
            "ping_timeout": None,
            "close_timeout": keepalive_timeout_s,
        }
        self._owns_socket = http_server is None
        if http_server is None:
            self._server: Server = serve(self._handle, host, port, **options)
        else:
            self._server = serve(self._handle, sock=http_server.socket, **options)
            http_server.push_handler = self._server.handler
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return int(self._server.socket.getsockname()[1])

    def _handle(self, connection: ServerConnection) -> None:
        role = role_for_path(connection.request.path)
        if role is None:
            connection.close(1008, "unknown endpoint")
            return
        run_session(
            self.relay,
            connection,
            role,
            keepalive_interval_s=self.keepalive_interval_s,
            keepalive_timeout_s=self.keepalive_timeout_s,
        )

    def start(self) -> None:
        if self._owns_socket:
            self._thread = threading.Thread(
                target=self._server.serve_forever, name="push-server", daemon=True
            )
            self._thread.start()
            logger.info("push server listening on port %d", self.port)
        else:
            logger.info("push endpoints share HTTP port %d", self.port)

    def shutdown(self) -> None:
        if self._owns_socket:
            self._server.shutdown()
        for handle in self.relay.registry.snapshot():
            try:
                handle.channel.close()
            except (RuntimeError, OSError) as exc:
                logger.debug("closing #%d during shutdown failed: %s", handle.id, exc)
        if self._thread is not None:
            self._thread.join(timeout=5)
