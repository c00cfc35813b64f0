from __future__ import annotations

import logging
import threading
import time

from .models import MediaStatus

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TTL_S = 600.0


class EphemeralMediaState:
    """Holds the single "now playing" record until its expiry timer fires.

    Replacing the record and re-arming the timer happen under one lock, and a
    timer only clears the record it was armed for.
    """

    def __init__(self, ttl_s: float = DEFAULT_MEDIA_TTL_S) -> None:
        self.ttl_s = ttl_s
        self._lock = threading.Lock()
        self._record: MediaStatus | None = None
        self._timer: threading.Timer | None = None
        self._deadline: float | None = None
        self._generation = 0

    def set_state(self, record: MediaStatus) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = threading.Timer(self.ttl_s, self._expire, args=(self._generation,))
            timer.daemon = True
            self._record = record
            self._timer = timer
            self._deadline = time.monotonic() + self.ttl_s
            timer.start()
        logger.debug("media state set: %r (playing=%s)", record.title, record.is_playing)

    def _expire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._record = None
            self._timer = None
            self._deadline = None
        logger.debug("media state expired")

    def current(self) -> MediaStatus | None:
        with self._lock:
            return self._record

    def current_if_playing(self) -> MediaStatus | None:
        record = self.current()
        if record is None or not record.is_playing:
            return None
        return record

    def expires_in(self) -> float | None:
        with self._lock:
            if self._deadline is None:
                return None
            return max(0.0, self._deadline - time.monotonic())

    def clear(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._record = None
            self._timer = None
            self._deadline = None
