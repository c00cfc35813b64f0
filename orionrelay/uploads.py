from __future__ import annotations

import contextlib
import logging
import os
import re
from pathlib import Path

from .fs_paths import get_data_dir

logger = logging.getLogger(__name__)

UPLOADS_DIRNAME = "uploads"
MAX_UPLOAD_BYTES = 10 << 20

_UNSAFE_CHARS = re.compile(r"[^\w.\- ]+")


class UploadError(ValueError):
    pass


def sanitize_filename(name: str) -> str:
    base = os.path.basename((name or "").replace("\\", "/")).strip()
    cleaned = _UNSAFE_CHARS.sub("_", base).strip(". ")
    return cleaned or "upload"


class UploadDir:
    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else get_data_dir() / UPLOADS_DIRNAME

    def ensure(self) -> Path:
        self.path.mkdir(parents=True, exist_ok=True)
        return self.path

    def save(self, prefix: str, display_name: str, body: bytes) -> str:
        if len(body) > MAX_UPLOAD_BYTES:
            raise UploadError("file too large")
        stored_name = f"{prefix}_{sanitize_filename(display_name)}"
        target = self.ensure() / stored_name
        with target.open("xb") as handle:
            handle.write(body)
        logger.debug("stored upload %s (%d bytes)", stored_name, len(body))
        return stored_name

    def resolve(self, stored_name: str) -> Path:
        if not stored_name or "/" in stored_name or "\\" in stored_name:
            raise UploadError("invalid file name")
        if stored_name in {".", ".."}:
            raise UploadError("invalid file name")
        candidate = (self.path / stored_name).resolve()
        if candidate.parent != self.path.resolve():
            raise UploadError("invalid file name")
        return candidate

    def remove(self, stored_name: str) -> bool:
        try:
            target = self.resolve(stored_name)
        except UploadError:
            return False
        with contextlib.suppress(FileNotFoundError):
            target.unlink()
            return True
        return False
