from __future__ import annotations

import datetime as dt
import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal


class Role(str, Enum):
    DESKTOP = "PC"
    MOBILE = "phone"


class ItemKind(str, Enum):
    TEXT = "text"
    FILE = "file"


EnvelopeType = Literal["initial", "update", "youtube_info"]


@dataclass(frozen=True)
class Item:
    id: str
    timestamp: str
    origin: Role
    kind: ItemKind
    content: str

    @property
    def created_at(self) -> dt.datetime | None:
        return parse_timestamp(self.timestamp)

    def file_names(self) -> tuple[str, str] | None:
        """Split a file item's content into (display name, stored name)."""

        if self.kind is not ItemKind.FILE:
            return None
        display, sep, stored = self.content.rpartition("|")
        if not sep:
            return stored, stored
        return display, stored

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "from": self.origin.value,
            "type": self.kind.value,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Item:
        try:
            return cls(
                id=str(data["id"]),
                timestamp=str(data.get("timestamp") or ""),
                origin=Role(data["from"]),
                kind=ItemKind(data["type"]),
                content=str(data.get("content") or ""),
            )
        except (KeyError, ValueError) as exc:
            raise ValueError(f"invalid item: {data!r}") from exc


@dataclass
class FlowData:
    items: list[Item] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"items": [item.to_dict() for item in self.items]}

    @classmethod
    def from_dict(cls, data: Any) -> FlowData:
        if not isinstance(data, dict):
            raise ValueError("flow data must be an object")
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ValueError("items must be a list")
        return cls(items=[Item.from_dict(item) for item in raw_items])


_MEDIA_FIELDS = {
    "videoId": "video_id",
    "title": "title",
    "currentTime": "current_time",
    "duration": "duration",
    "timestampLink": "timestamp_link",
    "isPlaying": "is_playing",
    "url": "url",
}


@dataclass(frozen=True)
class MediaStatus:
    video_id: str = ""
    title: str = ""
    current_time: int = 0
    duration: int = 0
    timestamp_link: str = ""
    is_playing: bool = False
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        values = asdict(self)
        return {wire: values[attr] for wire, attr in _MEDIA_FIELDS.items()}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MediaStatus:
        values: dict[str, Any] = {}
        for wire, attr in _MEDIA_FIELDS.items():
            if wire not in payload or payload[wire] is None:
                continue
            value = payload[wire]
            if attr in {"current_time", "duration"}:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ValueError(f"{wire} must be a number")
                values[attr] = int(value)
            elif attr == "is_playing":
                if not isinstance(value, bool):
                    raise ValueError(f"{wire} must be a boolean")
                values[attr] = value
            else:
                if not isinstance(value, str):
                    raise ValueError(f"{wire} must be a string")
                values[attr] = value
        return cls(**values)


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def parse_timestamp(value: str) -> dt.datetime | None:
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def envelope(kind: EnvelopeType, data: FlowData | MediaStatus) -> str:
    return json.dumps({"type": kind, "data": data.to_dict()}, ensure_ascii=False)
