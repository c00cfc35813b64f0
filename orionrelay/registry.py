from __future__ import annotations

import contextlib
import itertools
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Protocol

from .models import Role

logger = logging.getLogger(__name__)


class Channel(Protocol):
    def send(self, message: str) -> None: ...

    def close(self) -> None: ...


_ids = itertools.count(1)


@dataclass(eq=False)
class Registration:
    role: Role
    channel: Channel
    id: int = field(default_factory=lambda: next(_ids))
    registered_at: float = field(default_factory=time.monotonic)
    last_seen: float = field(default_factory=time.monotonic)
    send_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def deliver(self, message: str) -> None:
        with self.send_lock:
            self.channel.send(message)


Bootstrap = Callable[[Registration], None]


class ConnectionRegistry:
    """Live connections grouped by role.

    Membership changes happen under ``self._lock``. Broadcasts copy the target
    set under the lock and write to peers after releasing it, so a slow peer
    never blocks register/unregister from other sessions.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._members: dict[Role, set[Registration]] = {role: set() for role in Role}

    def register(
        self,
        role: Role,
        channel: Channel,
        *,
        bootstrap: Bootstrap | None = None,
    ) -> Registration:
        """Add ``channel`` to ``role``'s set.

        When ``bootstrap`` is given it runs while the registration's send lock
        is held, so it is written before any broadcast reaches this peer.
        """

        handle = Registration(role=role, channel=channel)
        handle.send_lock.acquire()
        try:
            with self._lock:
                self._members[role].add(handle)
                total = len(self._members[role])
            logger.debug(
                "registered %s connection #%d, total %s: %d",
                role.name,
                handle.id,
                role.name,
                total,
            )
            if bootstrap is not None:
                bootstrap(handle)
        except BaseException:
            handle.send_lock.release()
            self.unregister(handle)
            raise
        handle.send_lock.release()
        return handle

    def unregister(self, handle: Registration) -> bool:
        with self._lock:
            members = self._members[handle.role]
            if handle not in members:
                return False
            members.discard(handle)
            total = len(members)
        logger.debug(
            "unregistered %s connection #%d, total %s: %d",
            handle.role.name,
            handle.id,
            handle.role.name,
            total,
        )
        return True

    def snapshot(self, role: Role | None = None) -> list[Registration]:
        with self._lock:
            if role is not None:
                return list(self._members[role])
            return [handle for members in self._members.values() for handle in members]

    def count(self, role: Role | None = None) -> int:
        with self._lock:
            if role is not None:
                return len(self._members[role])
            return sum(len(members) for members in self._members.values())

    def __contains__(self, handle: object) -> bool:
        if not isinstance(handle, Registration):
            return False
        with self._lock:
            return handle in self._members[handle.role]

    def broadcast_to_all(self, message: str) -> int:
        return self._fan_out(self.snapshot(), message)

    def broadcast_to_role(self, role: Role, message: str) -> int:
        return self._fan_out(self.snapshot(role), message)

    def _fan_out(self, targets: list[Registration], message: str) -> int:
        delivered = 0
        dead: list[Registration] = []
        for handle in targets:
            try:
                handle.deliver(message)
            except Exception as exc:
                logger.debug("broadcast to %s #%d failed: %s", handle.role.name, handle.id, exc)
                dead.append(handle)
                continue
            delivered += 1
        if dead:
            self._drop(dead)
        logger.debug("broadcast delivered to %d/%d connections", delivered, len(targets))
        return delivered

    def _drop(self, handles: Iterable[Registration]) -> None:
        dropped: list[Registration] = []
        with self._lock:
            for handle in handles:
                members = self._members[handle.role]
                if handle in members:
                    members.discard(handle)
                    dropped.append(handle)
        for handle in dropped:
            logger.info("dropped dead %s connection #%d", handle.role.name, handle.id)
            with contextlib.suppress(Exception):
                handle.channel.close()
