from __future__ import annotations

import http.client
import io
import json
import threading
from collections.abc import Iterator
from http.server import ThreadingHTTPServer
from pathlib import Path

import pytest

from orionrelay.config import SettingsStore
from orionrelay.http_api import (
    PayloadTooLarge,
    build_relay_handler,
    read_body,
    read_json_body,
    read_multipart_file,
    send_json_response,
    send_text_response,
)
from orionrelay.media import EphemeralMediaState
from orionrelay.models import Role
from orionrelay.registry import ConnectionRegistry
from orionrelay.relay import Relay
from orionrelay.store import ItemStore
from orionrelay.uploads import UploadDir


class DummyHandler:
    def __init__(self, body: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self.headers = headers or {}
        self.rfile = io.BytesIO(body)
        self.wfile = io.BytesIO()
        self.status: int | None = None
        self.response_headers: list[tuple[str, str]] = []
        self.headers_ended = False

    def send_response(self, status: int) -> None:
        self.status = status

    def send_header(self, key: str, value: str) -> None:
        self.response_headers.append((key, value))

    def end_headers(self) -> None:
        self.headers_ended = True


def _header_value(handler: DummyHandler, name: str) -> str | None:
    for key, value in handler.response_headers:
        if key == name:
            return value
    return None


def test_send_json_response() -> None:
    handler = DummyHandler()
    payload = {"status": "success", "text": "héllo"}
    expected_body = json.dumps(payload, ensure_ascii=False).encode("utf-8")

    send_json_response(handler, payload, status=201)

    assert handler.status == 201
    assert _header_value(handler, "Content-Type") == "application/json; charset=utf-8"
    assert _header_value(handler, "Content-Length") == str(len(expected_body))
    assert handler.headers_ended is True
    assert handler.wfile.getvalue() == expected_body


def test_send_text_response() -> None:
    handler = DummyHandler()

    send_text_response(handler, "All Good")

    assert handler.status == 200
    assert _header_value(handler, "Content-Type") == "text/plain; charset=utf-8"
    assert handler.wfile.getvalue() == b"All Good"


def test_read_json_body() -> None:
    body = json.dumps({"text": "hi"}).encode("utf-8")
    handler = DummyHandler(body=body, headers={"Content-Length": str(len(body))})

    assert read_json_body(handler) == {"text": "hi"}


def test_read_json_body_invalid_or_empty() -> None:
    assert read_json_body(DummyHandler(headers={"Content-Length": "0"})) is None
    assert read_json_body(DummyHandler(b"not-json", {"Content-Length": "8"})) is None
    assert read_json_body(DummyHandler(b"[1]", {"Content-Length": "3"})) is None


def test_read_body_enforces_limit() -> None:
    handler = DummyHandler(body=b"12345", headers={"Content-Length": "5"})

    with pytest.raises(PayloadTooLarge):
        read_body(handler, limit=4)


BOUNDARY = "orion-test-boundary"


def _multipart(
    filename: str, content: bytes, field: str = "file", extra: bytes = b""
) -> tuple[bytes, dict[str, str]]:
    body = (
        extra
        + (
            f"--{BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="{field}"; filename="{filename}"\r\n'
            "Content-Type: text/plain\r\n"
            "\r\n"
        ).encode("utf-8")
        + content
        + f"\r\n--{BOUNDARY}--\r\n".encode()
    )
    headers = {
        "Content-Type": f"multipart/form-data; boundary={BOUNDARY}",
        "Content-Length": str(len(body)),
    }
    return body, headers


def test_read_multipart_file() -> None:
    note = (
        f"--{BOUNDARY}\r\n"
        'Content-Disposition: form-data; name="note"\r\n'
        "\r\n"
        "ignored\r\n"
    ).encode()
    body, headers = _multipart("notes.txt", b"line one\nline two", extra=note)

    assert read_multipart_file(DummyHandler(body, headers), limit=1024) == (
        "notes.txt",
        b"line one\nline two",
    )


def test_read_multipart_file_other_field_or_too_large() -> None:
    body, headers = _multipart("a.txt", b"data", field="attachment")
    assert read_multipart_file(DummyHandler(body, headers), limit=1024) is None

    body, headers = _multipart("a.txt", b"x" * 100)
    with pytest.raises(PayloadTooLarge):
        read_multipart_file(DummyHandler(body, headers), limit=10)


@pytest.fixture
def relay(tmp_path: Path) -> Iterator[Relay]:
    relay = Relay(
        ItemStore(tmp_path / "data.json"),
        EphemeralMediaState(ttl_s=5),
        ConnectionRegistry(),
        UploadDir(tmp_path / "uploads"),
        fire_and_forget=False,
    )
    yield relay
    relay.media.clear()


@pytest.fixture
def server(relay: Relay, tmp_path: Path) -> Iterator[int]:
    handler = build_relay_handler(relay, SettingsStore(tmp_path / "settings.json"))
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield int(httpd.server_address[1])
    finally:
        httpd.shutdown()
        httpd.server_close()


def _request(
    port: int,
    method: str,
    path: str,
    body: bytes | dict | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, str], bytes]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    try:
        payload = json.dumps(body).encode("utf-8") if isinstance(body, dict) else body
        request_headers = dict(headers or {})
        if isinstance(body, dict):
            request_headers.setdefault("Content-Type", "application/json")
        conn.request(method, path, body=payload, headers=request_headers)
        resp = conn.getresponse()
        return resp.status, dict(resp.getheaders()), resp.read()
    finally:
        conn.close()


def test_health_check(server: int) -> None:
    status, headers, body = _request(server, "GET", "/")

    assert status == 200
    assert body == b"All Good"
    assert headers["Access-Control-Allow-Origin"] == "*"


def test_options_preflight(server: int) -> None:
    status, headers, body = _request(server, "OPTIONS", "/pc/message")

    assert status == 200
    assert body == b""
    assert "POST" in headers["Access-Control-Allow-Methods"]


def test_message_round_trip(server: int, relay: Relay) -> None:
    status, _, body = _request(server, "POST", "/mobile/message", {"text": "hello pc"})
    assert status == 200
    created = json.loads(body)
    assert created["status"] == "success"

    for path in ("/pc/items", "/mobile/items"):
        status, _, body = _request(server, "GET", path)
        assert status == 200
        items = json.loads(body)["items"]
        assert items == [
            {
                "id": created["id"],
                "timestamp": items[0]["timestamp"],
                "from": "phone",
                "type": "text",
                "content": "hello pc",
            }
        ]


def test_message_requires_text(server: int) -> None:
    assert _request(server, "POST", "/pc/message", {"body": "x"})[0] == 400
    assert _request(server, "POST", "/pc/message", b"not json")[0] == 400
    assert _request(server, "POST", "/pc/message", {"text": 5})[0] == 400


def test_unknown_path_and_wrong_method(server: int) -> None:
    status, _, body = _request(server, "GET", "/nope")
    assert status == 404
    assert json.loads(body) == {"error": "not found"}

    assert _request(server, "GET", "/pc/message")[0] == 405
    assert _request(server, "DELETE", "/mobile/items")[0] == 405
    assert _request(server, "PUT", "/pc/items")[0] == 405


def test_clear_items(server: int, relay: Relay) -> None:
    relay.add_text(Role.DESKTOP, "x")

    status, _, body = _request(server, "DELETE", "/pc/items")

    assert status == 200
    assert json.loads(body) == {"status": "success"}
    assert relay.items().items == []


def test_corrupt_log_is_server_error(server: int, relay: Relay) -> None:
    relay.store.path.write_text("{broken", encoding="utf-8")

    status, _, body = _request(server, "GET", "/pc/items")

    assert status == 500
    assert json.loads(body) == {"error": "storage error"}


def test_file_upload_and_download(server: int, relay: Relay) -> None:
    status, _, body = _request(
        server,
        "POST",
        "/pc/file?name=hello%20world.txt",
        b"file body",
        {"Content-Type": "application/octet-stream"},
    )
    assert status == 200
    created = json.loads(body)
    stored_name = relay.items().items[0].file_names()[1]
    assert created["url"].endswith(f"/uploads/{stored_name.replace(' ', '%20')}")
    assert relay.items().items[0].file_names()[0] == "hello world.txt"

    status, headers, body = _request(server, "GET", created["url"].split(str(server), 1)[1])
    assert status == 200
    assert body == b"file body"
    assert headers["Content-Disposition"].startswith("attachment;")


def test_file_upload_with_filename_header(server: int, relay: Relay) -> None:
    status, _, _ = _request(server, "POST", "/mobile/file", b"img", {"X-Filename": "a%20b.png"})

    assert status == 200
    item = relay.items().items[0]
    assert item.origin is Role.MOBILE
    assert item.file_names()[0] == "a b.png"


def test_multipart_file_upload(server: int, relay: Relay) -> None:
    body, headers = _multipart("holiday photo.jpg", b"\xff\xd8jpeg bytes")

    status, _, response = _request(server, "POST", "/mobile/file", body, headers)

    assert status == 200
    item = relay.items().items[0]
    assert item.origin is Role.MOBILE
    display_name, stored_name = item.file_names()
    assert display_name == "holiday photo.jpg"
    assert json.loads(response)["url"].endswith(f"/uploads/{stored_name.replace(' ', '%20')}")
    assert (relay.uploads.path / stored_name).read_bytes() == b"\xff\xd8jpeg bytes"


def test_multipart_upload_errors(server: int, relay: Relay) -> None:
    body, headers = _multipart("a.txt", b"data", field="upload")
    assert _request(server, "POST", "/pc/file", body, headers)[0] == 400

    headers = {"Content-Type": "multipart/form-data"}
    assert _request(server, "POST", "/pc/file", b"--x\r\n", headers)[0] == 400
    assert relay.items().items == []


def test_file_upload_validation(server: int) -> None:
    assert _request(server, "POST", "/pc/file", b"data")[0] == 400
    assert _request(server, "POST", "/pc/file?name=a.txt", b"")[0] == 400


def test_oversize_upload_rejected(server: int, relay: Relay) -> None:
    conn = http.client.HTTPConnection("127.0.0.1", server, timeout=5)
    try:
        conn.putrequest("POST", "/pc/file?name=big.bin")
        conn.putheader("Content-Length", str(64 << 20))
        conn.endheaders()
        resp = conn.getresponse()
        assert resp.status == 413
    finally:
        conn.close()
    assert relay.items().items == []


def test_download_errors(server: int) -> None:
    assert _request(server, "GET", "/uploads/missing.txt")[0] == 404
    assert _request(server, "GET", "/uploads/")[0] == 400
    assert _request(server, "GET", "/uploads/..%2Fdata.json")[0] == 400


def test_media_status_endpoints(server: int) -> None:
    status, _, body = _request(server, "GET", "/pc/youtube-info")
    assert status == 200
    assert json.loads(body) is None

    payload = {"videoId": "abc", "title": "Song", "currentTime": 10, "isPlaying": True}
    assert _request(server, "POST", "/pc/youtube-info", payload)[0] == 200

    status, _, body = _request(server, "GET", "/pc/youtube-info")
    data = json.loads(body)
    assert data["title"] == "Song"
    assert data["currentTime"] == 10
    assert data["isPlaying"] is True

    assert _request(server, "POST", "/pc/youtube-info", {"isPlaying": "yes"})[0] == 400


def test_settings_endpoints(server: int, tmp_path: Path) -> None:
    status, _, body = _request(server, "GET", "/api/settings")
    assert status == 200
    payload = json.loads(body)
    assert payload["settings"]["port"] == "8000"
    assert payload["defaults"]["host"] == "0.0.0.0"
    assert payload["env_overrides"] == {}

    status, _, body = _request(server, "POST", "/api/settings", {"settings": {"port": "9000"}})
    assert status == 200
    assert json.loads(body)["restart_required"] is True
    assert json.loads((tmp_path / "settings.json").read_text())["port"] == "9000"

    status, _, body = _request(server, "POST", "/api/settings", {"port": ""})
    assert status == 400
    assert "port" in json.loads(body)["error"]
    assert json.loads((tmp_path / "settings.json").read_text())["port"] == "9000"
