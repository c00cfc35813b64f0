from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Callable

from .media import EphemeralMediaState
from .models import FlowData, Item, ItemKind, MediaStatus, Role, envelope, utc_now
from .registry import Channel, ConnectionRegistry, Registration
from .store import ItemStore, ItemStoreError
from .uploads import UploadDir

logger = logging.getLogger(__name__)


class Relay:
    """Persist-then-broadcast facade shared by the HTTP and push servers."""

    def __init__(
        self,
        store: ItemStore,
        media: EphemeralMediaState,
        registry: ConnectionRegistry,
        uploads: UploadDir,
        *,
        fire_and_forget: bool = True,
    ) -> None:
        self.store = store
        self.media = media
        self.registry = registry
        self.uploads = uploads
        self.fire_and_forget = fire_and_forget

    def items(self) -> FlowData:
        return self.store.load_all()

    def add_text(self, origin: Role, text: str) -> Item:
        item = self.store.add_item(origin, ItemKind.TEXT, text)
        self.notify_items_changed()
        return item

    def add_file(self, origin: Role, display_name: str, body: bytes) -> tuple[Item, str]:
        stored_name = self.uploads.save(self.store.reserve_id(), display_name, body)
        try:
            item = self.store.add_item(origin, ItemKind.FILE, f"{display_name}|{stored_name}")
        except ItemStoreError:
            self.uploads.remove(stored_name)
            raise
        self.notify_items_changed()
        return item, stored_name

    def clear(self) -> None:
        self.store.clear()
        self.notify_items_changed()

    def prune(self, retention_days: int, *, now: dt.datetime | None = None) -> int:
        if retention_days <= 0:
            return 0
        cutoff = (now or utc_now()) - dt.timedelta(days=retention_days)
        removed = self.store.prune_older_than(cutoff)
        for item in removed:
            names = item.file_names()
            if names is not None:
                self.uploads.remove(names[1])
        if removed:
            self.notify_items_changed()
        return len(removed)

    def set_media(self, status: MediaStatus) -> None:
        self.media.set_state(status)
        self.notify_media_changed(status)

    def notify_items_changed(self) -> None:
        self._dispatch(self.broadcast_items)

    def notify_media_changed(self, status: MediaStatus) -> None:
        self._dispatch(self.broadcast_media, status)

    def broadcast_items(self) -> int:
        try:
            data = self.store.load_all()
        except ItemStoreError:
            logger.warning("skipping update broadcast: item log unavailable")
            return 0
        return self.registry.broadcast_to_all(envelope("update", data))

    def broadcast_media(self, status: MediaStatus) -> int:
        return self.registry.broadcast_to_role(Role.MOBILE, envelope("youtube_info", status))

    def connect(self, role: Role, channel: Channel) -> Registration:
        return self.registry.register(role, channel, bootstrap=self._bootstrap)

    def disconnect(self, handle: Registration) -> None:
        self.registry.unregister(handle)

    def _bootstrap(self, handle: Registration) -> None:
        handle.channel.send(envelope("initial", self.store.load_all()))
        if handle.role is Role.MOBILE:
            status = self.media.current_if_playing()
            if status is not None:
                handle.channel.send(envelope("youtube_info", status))

    def _dispatch(self, target: Callable[..., int], *args: object) -> None:
        if not self.fire_and_forget:
            target(*args)
            return
        thread = threading.Thread(target=self._run_broadcast, args=(target, *args), daemon=True)
        thread.start()

    def _run_broadcast(self, target: Callable[..., int], *args: object) -> None:
        try:
            target(*args)
        except Exception as exc:
            logger.exception("broadcast failed", exc_info=exc)
