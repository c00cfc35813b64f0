from __future__ import annotations

import time

import pytest

from orionrelay.media import EphemeralMediaState
from orionrelay.models import MediaStatus


def _status(**overrides: object) -> MediaStatus:
    values: dict[str, object] = {
        "video_id": "abc123",
        "title": "Song",
        "current_time": 42,
        "duration": 180,
        "timestamp_link": "https://youtu.be/abc123?t=42",
        "is_playing": True,
        "url": "https://www.youtube.com/watch?v=abc123",
    }
    values.update(overrides)
    return MediaStatus(**values)  # type: ignore[arg-type]


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_record_expires_after_ttl() -> None:
    state = EphemeralMediaState(ttl_s=0.1)
    state.set_state(_status())

    assert state.current() == _status()
    assert _wait_until(lambda: state.current() is None)
    assert state.expires_in() is None


def test_replacing_record_resets_deadline() -> None:
    state = EphemeralMediaState(ttl_s=0.3)
    state.set_state(_status(title="first"))
    time.sleep(0.2)
    state.set_state(_status(title="second"))
    time.sleep(0.2)

    current = state.current()
    assert current is not None
    assert current.title == "second"
    assert _wait_until(lambda: state.current() is None)


def test_current_if_playing_skips_paused() -> None:
    state = EphemeralMediaState(ttl_s=5)
    try:
        state.set_state(_status(is_playing=False))
        assert state.current() is not None
        assert state.current_if_playing() is None

        state.set_state(_status())
        assert state.current_if_playing() == _status()
    finally:
        state.clear()


def test_clear_cancels_pending_expiry() -> None:
    state = EphemeralMediaState(ttl_s=5)
    state.set_state(_status())
    remaining = state.expires_in()
    assert remaining is not None and 0 < remaining <= 5

    state.clear()

    assert state.current() is None
    assert state.expires_in() is None


def test_media_status_wire_keys() -> None:
    assert _status().to_dict() == {
        "videoId": "abc123",
        "title": "Song",
        "currentTime": 42,
        "duration": 180,
        "timestampLink": "https://youtu.be/abc123?t=42",
        "isPlaying": True,
        "url": "https://www.youtube.com/watch?v=abc123",
    }


def test_from_payload_coerces_numbers_and_fills_defaults() -> None:
    status = MediaStatus.from_payload({"title": "Song", "currentTime": 12.7, "isPlaying": True})

    assert status.title == "Song"
    assert status.current_time == 12
    assert status.duration == 0
    assert status.video_id == ""


@pytest.mark.parametrize(
    "payload",
    [
        {"currentTime": "12"},
        {"duration": True},
        {"isPlaying": "yes"},
        {"title": 5},
    ],
)
def test_from_payload_rejects_wrong_types(payload: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        MediaStatus.from_payload(payload)
