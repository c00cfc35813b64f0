from __future__ import annotations

import logging
import threading
from pathlib import Path

from .config import ServerSettings, SettingsStore
from .fs_paths import get_data_dir
from .http_api import build_relay_handler
from .media import EphemeralMediaState
from .net import advertise_host, find_available_port
from .push_server import PushServer, RelayHTTPServer
from .registry import ConnectionRegistry
from .relay import Relay
from .store import DATA_FILENAME, ItemStore
from .sweeper import DEFAULT_SWEEP_INTERVAL_S, RetentionSweeper
from .uploads import UPLOADS_DIRNAME, UploadDir

logger = logging.getLogger(__name__)


class RelayServer:
    """Owns the HTTP listener, the push endpoints and the retention sweeper.

    Push upgrades are served on the HTTP port unless a different nonzero
    ``push_port`` is given, in which case a second listener is bound. Pass
    ``http_port=0`` to bind an ephemeral port; the bound values are exposed as
    ``http_port`` and ``push_port`` after ``start``.
    """

    def __init__(
        self,
        settings: ServerSettings,
        *,
        data_dir: str | Path | None = None,
        settings_store: SettingsStore | None = None,
        http_port: int | None = None,
        push_port: int | None = None,
        fallback_ports: bool = False,
        sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
    ) -> None:
        self.settings = settings
        self.data_dir = get_data_dir(data_dir)
        self.settings_store = settings_store or SettingsStore(data_dir=self.data_dir)
        self.relay = Relay(
            ItemStore(self.data_dir / DATA_FILENAME),
            EphemeralMediaState(settings.media_ttl_s),
            ConnectionRegistry(),
            UploadDir(self.data_dir / UPLOADS_DIRNAME),
        )
        self.host = settings.host
        self._requested_http_port = settings.port_number if http_port is None else http_port
        self._requested_push_port = settings.push_port if push_port is None else push_port
        self.fallback_ports = fallback_ports
        self.sweeper = RetentionSweeper(
            self.relay, settings.retention_days, interval_s=sweep_interval_s
        )
        self._http: RelayHTTPServer | None = None
        self._http_thread: threading.Thread | None = None
        self._push: PushServer | None = None

    @property
    def http_port(self) -> int:
        if self._http is None:
            return self._requested_http_port
        return int(self._http.server_address[1])

    @property
    def push_port(self) -> int:
        if self._push is not None:
            return self._push.port
        return self._requested_push_port or self.http_port

    def _pick_port(self, requested: int) -> int:
        if not self.fallback_ports or requested == 0:
            return requested
        port = find_available_port(self.host, requested)
        if port != requested:
            logger.warning("port %d is busy, using %d instead", requested, port)
        return port

    def _build_push(self, http_server: RelayHTTPServer) -> PushServer:
        options = {
            "keepalive_interval_s": self.settings.keepalive_interval_s,
            "keepalive_timeout_s": self.settings.keepalive_timeout_s,
        }
        requested = self._requested_push_port
        if not requested or requested == self.http_port:
            return PushServer(self.relay, http_server=http_server, **options)
        return PushServer(self.relay, host=self.host, port=self._pick_port(requested), **options)

    def start(self) -> None:
        self.relay.uploads.ensure()
        handler = build_relay_handler(self.relay, self.settings_store)
        self._http = RelayHTTPServer(
            (self.host, self._pick_port(self._requested_http_port)), handler
        )
        try:
            self._push = self._build_push(self._http)
        except OSError:
            self._http.server_close()
            self._http = None
            raise
        self._http_thread = threading.Thread(
            target=self._http.serve_forever, name="relay-http", daemon=True
        )
        self._http_thread.start()
        self._push.start()
        self.sweeper.start()
        logger.info(
            "relay listening on http://%s:%d (push port %d)",
            self.host,
            self.http_port,
            self.push_port,
        )

    def urls(self) -> dict[str, str]:
        host = advertise_host(self.host)
        return {
            "http": f"http://{host}:{self.http_port}",
            "desktop": f"ws://{host}:{self.push_port}/pc/ws",
            "mobile": f"ws://{host}:{self.push_port}/mobile/ws",
        }

    def close(self) -> None:
        self.sweeper.stop()
        if self._http is not None:
            self._http.shutdown()
        if self._push is not None:
            self._push.shutdown()
            self._push = None
        if self._http is not None:
            self._http.server_close()
            self._http = None
        if self._http_thread is not None:
            self._http_thread.join(timeout=5)
            self._http_thread = None
        self.relay.media.clear()
        logger.info("relay stopped")

    def __enter__(self) -> RelayServer:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
