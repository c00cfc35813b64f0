from __future__ import annotations

import json
import logging
import os
import threading
import warnings
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from .fs_paths import get_data_dir, write_json_atomic

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"

CONFIG_ENV_OVERRIDES = {
    "host": "ORION_RELAY_HOST",
    "port": "ORION_RELAY_PORT",
    "retention_days": "ORION_RELAY_RETENTION_DAYS",
    "push_port": "ORION_RELAY_PUSH_PORT",
    "keepalive_interval_s": "ORION_RELAY_KEEPALIVE_INTERVAL_S",
    "keepalive_timeout_s": "ORION_RELAY_KEEPALIVE_TIMEOUT_S",
    "media_ttl_s": "ORION_RELAY_MEDIA_TTL_S",
}

_INT_KEYS = {"retention_days", "push_port"}
_FLOAT_KEYS = {"keepalive_interval_s", "keepalive_timeout_s", "media_ttl_s"}


class SettingsValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: str = "8000"
    retention_days: int = 0
    push_port: int = 0
    keepalive_interval_s: float = 30.0
    keepalive_timeout_s: float = 20.0
    media_ttl_s: float = 600.0

    @property
    def port_number(self) -> int:
        return int(self.port)

    @property
    def effective_push_port(self) -> int:
        if self.push_port:
            return self.push_port
        return self.port_number


def get_settings_path(path: Path | None = None, *, data_dir: Path | None = None) -> Path:
    override = os.getenv("ORION_RELAY_SETTINGS")
    candidate = path or (Path(override) if override else get_data_dir(data_dir) / SETTINGS_FILENAME)
    return candidate.expanduser()


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


def _invalid(message: str, default: Any, *, strict: bool) -> Any:
    if strict:
        raise SettingsValidationError(message)
    warnings.warn(message, RuntimeWarning, stacklevel=3)
    return default


def _parse_int(value: Any, default: int, *, key: str, strict: bool = False) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        return _invalid(f"Invalid int for {key}: {value!r}", default, strict=strict)
    try:
        return int(value)
    except (TypeError, ValueError):
        return _invalid(f"Invalid int for {key}: {value!r}", default, strict=strict)


def _parse_float(value: Any, default: float, *, key: str, strict: bool = False) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        return _invalid(f"Invalid number for {key}: {value!r}", default, strict=strict)
    try:
        return float(value)
    except (TypeError, ValueError):
        return _invalid(f"Invalid number for {key}: {value!r}", default, strict=strict)


def _coerce(settings: ServerSettings, key: str, value: Any, *, strict: bool = False) -> Any:
    current = getattr(settings, key)
    if key in _INT_KEYS:
        return _parse_int(value, current, key=key, strict=strict)
    if key in _FLOAT_KEYS:
        return _parse_float(value, current, key=key, strict=strict)
    if key == "port" and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        return _invalid(f"Invalid string for {key}: {value!r}", current, strict=strict)
    return value.strip()


def _apply_dict(
    settings: ServerSettings, data: dict[str, Any], *, strict: bool = False
) -> ServerSettings:
    known = {f.name for f in fields(ServerSettings)}
    changes = {
        key: _coerce(settings, key, value, strict=strict)
        for key, value in data.items()
        if key in known
    }
    return replace(settings, **changes)


def _apply_env(settings: ServerSettings) -> ServerSettings:
    return _apply_dict(settings, get_env_overrides())


def validate_settings(settings: ServerSettings) -> None:
    port = settings.port.strip()
    if not port:
        raise SettingsValidationError("port must not be empty")
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise SettingsValidationError("port must be a number between 1 and 65535")
    if settings.retention_days < 0:
        raise SettingsValidationError("retention_days must be >= 0")
    if not 0 <= settings.push_port < 65536:
        raise SettingsValidationError("push_port must be between 0 and 65535")
    for key in ("keepalive_interval_s", "keepalive_timeout_s", "media_ttl_s"):
        if getattr(settings, key) <= 0:
            raise SettingsValidationError(f"{key} must be positive")


class SettingsStore:
    def __init__(self, path: Path | None = None, *, data_dir: Path | None = None) -> None:
        self.path = get_settings_path(path, data_dir=data_dir)
        self._lock = threading.Lock()

    def read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("settings file unreadable, using defaults: %s", self.path, exc_info=exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("settings file is not an object, using defaults: %s", self.path)
            return {}
        return data

    def load(self) -> ServerSettings:
        settings = _apply_dict(ServerSettings(), self.read_file())
        settings = _apply_env(settings)
        try:
            validate_settings(settings)
        except SettingsValidationError as exc:
            logger.warning("invalid settings (%s), using defaults", exc)
            return ServerSettings()
        return settings

    def _write(self, settings: ServerSettings) -> Path:
        write_json_atomic(self.path, asdict(settings))
        logger.info("settings saved to %s", self.path)
        return self.path

    def save(self, settings: ServerSettings) -> Path:
        validate_settings(settings)
        with self._lock:
            return self._write(settings)

    def update(self, changes: dict[str, Any]) -> ServerSettings:
        """Merge ``changes`` onto the saved file; read, merge and write hold one lock."""

        known = {f.name for f in fields(ServerSettings)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise SettingsValidationError(f"unknown settings: {', '.join(unknown)}")
        with self._lock:
            base = _apply_dict(ServerSettings(), self.read_file())
            updated = _apply_dict(base, changes, strict=True)
            validate_settings(updated)
            self._write(updated)
        return updated
