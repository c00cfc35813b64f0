from __future__ import annotations

import json
from dataclasses import asdict

import typer
from rich import print

from orionrelay.config import (
    CONFIG_ENV_OVERRIDES,
    SettingsStore,
    SettingsValidationError,
    get_env_overrides,
)


def config_show_cmd(*, as_json: bool) -> None:
    """Print effective settings and where they came from."""

    store = SettingsStore()
    settings = asdict(store.load())
    overrides = get_env_overrides()
    if as_json:
        payload = {"path": str(store.path), "settings": settings, "env_overrides": overrides}
        typer.echo(json.dumps(payload, indent=2))
        return
    print(f"[bold]Settings file:[/bold] {store.path}")
    for key, value in settings.items():
        suffix = f" [dim](from {CONFIG_ENV_OVERRIDES[key]})[/dim]" if key in overrides else ""
        print(f"- {key}: {value}{suffix}")


def config_set_cmd(*, key: str, value: str) -> None:
    """Persist one setting; takes effect on the next start."""

    store = SettingsStore()
    try:
        updated = store.update({key: value})
    except SettingsValidationError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from None
    print(f"[green]Saved {key}={getattr(updated, key)} to {store.path}[/green]")
    if key in get_env_overrides():
        print(f"[yellow]{CONFIG_ENV_OVERRIDES[key]} is set and overrides the saved value[/yellow]")
    print("Restart the relay to apply changes")
