from __future__ import annotations

from pathlib import Path

import pytest

from orionrelay.config import CONFIG_ENV_OVERRIDES


@pytest.fixture(autouse=True)
def _isolate_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv("ORION_RELAY_SETTINGS", raising=False)
    monkeypatch.delenv("ORION_RELAY_HTTP_LOGS", raising=False)
    data_dir = tmp_path / "data"
    monkeypatch.setenv("ORION_RELAY_DATA_DIR", str(data_dir))
    return data_dir
