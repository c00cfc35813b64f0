from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import asdict
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import parse_qs, quote, unquote, urlparse

from python_multipart import parse_form
from python_multipart.exceptions import FormParserError
from python_multipart.multipart import File

from .config import ServerSettings, SettingsStore, SettingsValidationError, get_env_overrides
from .models import MediaStatus, Role
from .relay import Relay
from .store import ItemStoreError
from .uploads import MAX_UPLOAD_BYTES, UploadError

logger = logging.getLogger(__name__)

MAX_JSON_BODY_BYTES = 1 << 20
# Boundaries and part headers around a single uploaded file.
MULTIPART_OVERHEAD_BYTES = 64 << 10

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS, PUT, DELETE",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With, X-Filename",
    "Access-Control-Allow-Credentials": "false",
}


class PayloadTooLarge(ValueError):
    pass


def send_json_response(handler: BaseHTTPRequestHandler, payload: Any, status: int = 200) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    send_bytes_response(
        handler, body, content_type="application/json; charset=utf-8", status=status
    )


def send_text_response(handler: BaseHTTPRequestHandler, text: str, status: int = 200) -> None:
    send_bytes_response(
        handler, text.encode("utf-8"), content_type="text/plain; charset=utf-8", status=status
    )


def send_bytes_response(
    handler: BaseHTTPRequestHandler,
    body: bytes,
    *,
    content_type: str,
    status: int = 200,
) -> None:
    handler.send_response(status)
    handler.send_header("Content-Type", content_type)
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def read_body(handler: BaseHTTPRequestHandler, *, limit: int) -> bytes:
    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError:
        length = 0
    if length <= 0:
        return b""
    if length > limit:
        raise PayloadTooLarge("payload too large")
    return handler.rfile.read(length)


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any] | None:
    raw = read_body(handler, limit=MAX_JSON_BODY_BYTES)
    if not raw:
        return None
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def read_multipart_file(
    handler: BaseHTTPRequestHandler, *, field: str = "file", limit: int
) -> tuple[str, bytes] | None:
    """Return ``(filename, data)`` of the first file part named ``field``.

    Raises ``PayloadTooLarge`` above ``limit`` and ``FormParserError`` on a
    malformed body.
    """

    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError:
        length = 0
    if length <= 0:
        return None
    if length > limit + MULTIPART_OVERHEAD_BYTES:
        raise PayloadTooLarge("payload too large")
    found: list[tuple[str, bytes]] = []

    def on_file(part: File) -> None:
        try:
            if found or part.field_name != field.encode():
                return
            part.file_object.seek(0)
            name = (part.file_name or b"").decode("utf-8", errors="replace")
            found.append((name, part.file_object.read()))
        finally:
            part.close()

    parse_form(
        {"Content-Type": handler.headers.get("Content-Type", ""), "Content-Length": str(length)},
        handler.rfile,
        lambda _field: None,
        on_file,
    )
    if not found:
        return None
    if len(found[0][1]) > limit:
        raise PayloadTooLarge("payload too large")
    return found[0]


def build_relay_handler(relay: Relay, settings_store: SettingsStore):
    role_prefixes = {"/pc": Role.DESKTOP, "/mobile": Role.MOBILE}

    class RelayHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            if os.environ.get("ORION_RELAY_HTTP_LOGS") == "1":
                super().log_message(format, *args)

        def end_headers(self) -> None:
            for key, value in CORS_HEADERS.items():
                self.send_header(key, value)
            super().end_headers()

        def _send_json(self, payload: Any, status: int = 200) -> None:
            send_json_response(self, payload, status=status)

        def _error(self, message: str, status: int) -> None:
            self._send_json({"error": message}, status=status)

        def do_OPTIONS(self) -> None:  # noqa: N802
            self.send_response(200)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def do_GET(self) -> None:  # noqa: N802
            self._dispatch("GET")

        def do_POST(self) -> None:  # noqa: N802
            self._dispatch("POST")

        def do_DELETE(self) -> None:  # noqa: N802
            self._dispatch("DELETE")

        def do_PUT(self) -> None:  # noqa: N802
            self._dispatch("PUT")

        def _routes(self, path: str) -> dict[str, Callable[[], None]] | None:
            if path == "/":
                return {"GET": lambda: send_text_response(self, "All Good")}
            if path.startswith("/uploads/"):
                return {"GET": lambda: self._download(unquote(path[len("/uploads/") :]))}
            if path == "/api/settings":
                return {"GET": self._get_settings, "POST": self._update_settings}
            if path == "/pc/youtube-info":
                return {"GET": self._get_media, "POST": self._set_media}
            if path == "/pc/items":
                return {"GET": self._get_items, "DELETE": self._clear_items}
            prefix, _, action = path.rpartition("/")
            role = role_prefixes.get(prefix)
            if role is None:
                return None
            if action == "items":
                return {"GET": self._get_items}
            if action == "message":
                return {"POST": lambda: self._add_message(role)}
            if action == "file":
                return {"POST": lambda: self._add_file(role)}
            return None

        def _dispatch(self, method: str) -> None:
            parsed = urlparse(self.path)
            self._query = parse_qs(parsed.query)
            routes = self._routes(parsed.path)
            if routes is None:
                self._error("not found", 404)
                return
            route = routes.get(method)
            if route is None:
                self._error("method not allowed", 405)
                return
            try:
                route()
            except PayloadTooLarge:
                self._error("payload too large", 413)
            except (ItemStoreError, OSError) as exc:
                logger.error("%s %s failed", method, parsed.path, exc_info=exc)
                self._error("storage error", 500)

        def _get_items(self) -> None:
            self._send_json(relay.items().to_dict())

        def _clear_items(self) -> None:
            relay.clear()
            self._send_json({"status": "success"})

        def _add_message(self, role: Role) -> None:
            payload = read_json_body(self)
            if payload is None or not isinstance(payload.get("text"), str):
                self._error("invalid json", 400)
                return
            item = relay.add_text(role, payload["text"])
            self._send_json({"status": "success", "id": item.id})

        def _upload_name(self) -> str:
            names = self._query.get("name") or []
            if names and names[0].strip():
                return names[0].strip()
            header = self.headers.get("X-Filename") or ""
            return unquote(header).strip()

        def _read_upload(self) -> tuple[str, bytes] | None:
            content_type = (self.headers.get("Content-Type") or "").lower()
            if content_type.startswith("multipart/form-data"):
                try:
                    upload = read_multipart_file(self, limit=MAX_UPLOAD_BYTES)
                except FormParserError as exc:
                    logger.debug("unparseable upload form: %s", exc)
                    self._error("unable to parse form", 400)
                    return None
                if upload is None:
                    self._error("unable to get file", 400)
                    return None
                name, body = upload
                return name.strip() or self._upload_name() or "upload", body
            # Raw body, name from ?name= or X-Filename.
            display_name = self._upload_name()
            if not display_name:
                self._error("missing file name", 400)
                return None
            body = read_body(self, limit=MAX_UPLOAD_BYTES)
            if not body:
                self._error("empty file", 400)
                return None
            return display_name, body

        def _add_file(self, role: Role) -> None:
            upload = self._read_upload()
            if upload is None:
                return
            display_name, body = upload
            try:
                item, stored_name = relay.add_file(role, display_name, body)
            except UploadError as exc:
                self._error(str(exc), 400)
                return
            bound_host, bound_port = self.server.server_address[:2]
            host = self.headers.get("Host") or f"{bound_host}:{bound_port}"
            self._send_json(
                {
                    "status": "success",
                    "id": item.id,
                    "url": f"http://{host}/uploads/{quote(stored_name)}",
                }
            )

        def _download(self, stored_name: str) -> None:
            try:
                path = relay.uploads.resolve(stored_name)
            except UploadError:
                self._error("no filename provided" if not stored_name else "invalid filename", 400)
                return
            if not path.is_file():
                self._error("file not found", 404)
                return
            size = path.stat().st_size
            self.send_response(200)
            self.send_header("Content-Type", "application/octet-stream")
            self.send_header("Content-Disposition", f'attachment; filename="{path.name}"')
            self.send_header("Content-Length", str(size))
            self.end_headers()
            with path.open("rb") as handle:
                shutil.copyfileobj(handle, self.wfile)

        def _get_media(self) -> None:
            record = relay.media.current()
            self._send_json(record.to_dict() if record else None)

        def _set_media(self) -> None:
            payload = read_json_body(self)
            if payload is None:
                self._error("invalid json", 400)
                return
            try:
                status = MediaStatus.from_payload(payload)
            except ValueError as exc:
                self._error(str(exc), 400)
                return
            relay.set_media(status)
            self._send_json({"status": "success"})

        def _get_settings(self) -> None:
            self._send_json(
                {
                    "path": str(settings_store.path),
                    "settings": asdict(settings_store.load()),
                    "defaults": asdict(ServerSettings()),
                    "env_overrides": get_env_overrides(),
                }
            )

        def _update_settings(self) -> None:
            payload = read_json_body(self)
            if payload is None:
                self._error("invalid json", 400)
                return
            updates = payload.get("settings") if "settings" in payload else payload
            if not isinstance(updates, dict):
                self._error("settings must be an object", 400)
                return
            try:
                updated = settings_store.update(updates)
            except SettingsValidationError as exc:
                self._error(str(exc), 400)
                return
            self._send_json({"settings": asdict(updated), "restart_required": True})

    return RelayHandler
