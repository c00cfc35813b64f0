from __future__ import annotations

import logging
import threading

from .relay import Relay
from .store import ItemStoreError

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_S = 3600.0


class RetentionSweeper:
    def __init__(
        self,
        relay: Relay,
        retention_days: int,
        *,
        interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
    ) -> None:
        self.relay = relay
        self.retention_days = retention_days
        self.interval_s = interval_s
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def enabled(self) -> bool:
        return self.retention_days > 0

    def tick(self) -> int:
        if not self.enabled():
            return 0
        try:
            return self.relay.prune(self.retention_days)
        except (ItemStoreError, OSError) as exc:
            logger.exception("retention sweep failed", exc_info=exc)
            return 0

    def start(self) -> None:
        if not self.enabled():
            return
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="retention-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        self.tick()
        while not self._stop.wait(self.interval_s):
            self.tick()
