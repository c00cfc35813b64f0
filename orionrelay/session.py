from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from urllib.parse import urlparse

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import ServerConnection

from .models import Role
from .registry import Registration
from .relay import Relay
from .store import ItemStoreError

logger = logging.getLogger(__name__)

PUSH_PATHS = {
    "/pc/ws": Role.DESKTOP,
    "/mobile/ws": Role.MOBILE,
}


def role_for_path(path: str) -> Role | None:
    return PUSH_PATHS.get(urlparse(path).path.rstrip("/") or "/")


class SocketChannel:
    def __init__(self, connection: ServerConnection) -> None:
        self.connection = connection

    def send(self, message: str) -> None:
        self.connection.send(message)

    def close(self) -> None:
        self.connection.close()

    def __repr__(self) -> str:
        return f"SocketChannel({self.connection.remote_address!r})"


class KeepAlive(threading.Thread):
    """Pings one connection on a fixed interval and closes it on a missed pong.

    ``on_dead`` runs before the close handshake, which can block for the
    connection's close timeout on a silent peer.
    """

    def __init__(
        self,
        connection: ServerConnection,
        handle: Registration,
        *,
        interval_s: float,
        timeout_s: float,
        on_dead: Callable[[Registration], None] | None = None,
    ) -> None:
        super().__init__(name=f"keepalive-{handle.role.name.lower()}-{handle.id}", daemon=True)
        self.connection = connection
        self.handle = handle
        self.interval_s = interval_s
        self.timeout_s = timeout_s
        self.on_dead = on_dead
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval_s):
            try:
                pong = self.connection.ping()
            except (ConnectionClosed, RuntimeError, OSError) as exc:
                logger.debug("keepalive ping failed for #%d: %s", self.handle.id, exc)
                self._terminate("keepalive ping failed")
                return
            acked = pong.wait(self.timeout_s)
            if self._stop_event.is_set():
                return
            if not acked:
                logger.info(
                    "%s connection #%d missed keepalive pong", self.handle.role.name, self.handle.id
                )
                self._terminate("keepalive ping timeout")
                return
            self.handle.touch()

    def _terminate(self, reason: str) -> None:
        if self.on_dead is not None:
            self.on_dead(self.handle)
        try:
            self.connection.close(1011, reason)
        except (RuntimeError, OSError) as exc:
            logger.debug("close after keepalive failure raised: %s", exc)


def run_session(
    relay: Relay,
    connection: ServerConnection,
    role: Role,
    *,
    keepalive_interval_s: float,
    keepalive_timeout_s: float,
) -> None:
    try:
        handle = relay.connect(role, SocketChannel(connection))
    except (ConnectionClosed, ItemStoreError, OSError) as exc:
        logger.info("%s connection dropped during bootstrap: %s", role.name, exc)
        return
    logger.info(
        "%s connection #%d established from %s",
        role.name,
        handle.id,
        connection.remote_address,
    )
    keepalive = KeepAlive(
        connection,
        handle,
        interval_s=keepalive_interval_s,
        timeout_s=keepalive_timeout_s,
        on_dead=relay.disconnect,
    )
    keepalive.start()
    try:
        # Inbound frames are ignored; reading only detects disconnects.
        for _message in connection:
            handle.touch()
    except ConnectionClosed as exc:
        logger.debug("%s connection #%d closed: %s", role.name, handle.id, exc)
    finally:
        keepalive.stop()
        relay.disconnect(handle)
        logger.info("%s connection #%d closed", role.name, handle.id)
