from __future__ import annotations

import datetime as dt
import json
import logging
import threading
import time
from pathlib import Path

from .fs_paths import get_data_dir, write_json_atomic
from .models import FlowData, Item, ItemKind, Role, utc_now

logger = logging.getLogger(__name__)

DATA_FILENAME = "data.json"
ID_PREFIX = "item_"


class ItemStoreError(RuntimeError):
    pass


def _id_nanos(item_id: str) -> int | None:
    if not item_id.startswith(ID_PREFIX):
        return None
    try:
        return int(item_id[len(ID_PREFIX) :])
    except ValueError:
        return None


class ItemStore:
    """Append-only item log persisted as one JSON document.

    Every mutation holds ``self._lock`` across load, modify and save so that
    concurrent writers never lose each other's items.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else get_data_dir() / DATA_FILENAME
        self._lock = threading.Lock()
        self._last_id_ns = 0

    def load_all(self) -> FlowData:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return FlowData()
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("item log read failed: %s", self.path, exc_info=exc)
            raise ItemStoreError(f"cannot read {self.path}") from exc
        if not raw.strip():
            return FlowData()
        try:
            return FlowData.from_dict(json.loads(raw))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("item log is corrupt: %s", self.path, exc_info=exc)
            raise ItemStoreError(f"corrupt item log {self.path}") from exc

    def _save(self, data: FlowData) -> None:
        try:
            write_json_atomic(self.path, data.to_dict())
        except OSError as exc:
            logger.error("item log write failed: %s", self.path, exc_info=exc)
            raise ItemStoreError(f"cannot write {self.path}") from exc

    def _next_id(self, data: FlowData) -> str:
        floor = self._last_id_ns
        if data.items:
            last = _id_nanos(data.items[-1].id)
            if last is not None:
                floor = max(floor, last)
        value = max(time.time_ns(), floor + 1)
        self._last_id_ns = value
        return f"{ID_PREFIX}{value}"

    def append_item(self, item: Item) -> FlowData:
        with self._lock:
            data = self.load_all()
            data.items.append(item)
            self._save(data)
        logger.debug("appended %s item %s, total %d", item.kind.value, item.id, len(data.items))
        return data

    def add_item(self, origin: Role, kind: ItemKind, content: str) -> Item:
        with self._lock:
            data = self.load_all()
            item = Item(
                id=self._next_id(data),
                timestamp=utc_now().isoformat(),
                origin=origin,
                kind=kind,
                content=content,
            )
            data.items.append(item)
            self._save(data)
        logger.debug("added %s item %s from %s", kind.value, item.id, origin.value)
        return item

    def reserve_id(self) -> str:
        """Mint an id without appending, for callers that need it before the item."""

        with self._lock:
            return self._next_id(self.load_all())

    def clear(self) -> None:
        with self._lock:
            self._save(FlowData())
        logger.info("item log cleared")

    def prune_older_than(self, cutoff: dt.datetime) -> list[Item]:
        with self._lock:
            data = self.load_all()
            kept: list[Item] = []
            removed: list[Item] = []
            for item in data.items:
                created = item.created_at
                if created is not None and created < cutoff:
                    removed.append(item)
                else:
                    kept.append(item)
            if removed:
                self._save(FlowData(items=kept))
        if removed:
            logger.info("pruned %d items older than %s", len(removed), cutoff.isoformat())
        return removed
