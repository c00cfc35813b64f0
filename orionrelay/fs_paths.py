from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

DEFAULT_DATA_DIR = Path("memory")


def get_data_dir(path: str | Path | None = None) -> Path:
    candidate = path or os.getenv("ORION_RELAY_DATA_DIR") or DEFAULT_DATA_DIR
    return Path(candidate).expanduser()


def ensure_path(path: str | Path) -> Path:
    resolved = Path(path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def write_json_atomic(path: str | Path, data: Any, *, indent: int = 4) -> Path:
    """Write ``data`` as JSON next to ``path`` and rename it into place.

    Readers see either the previous file or the complete new one, never a
    truncated write.
    """

    target = ensure_path(path)
    body = json.dumps(data, ensure_ascii=False, indent=indent) + "\n"
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(body)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
    return target
