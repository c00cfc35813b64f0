from __future__ import annotations

import logging
import os
import signal
import threading
from dataclasses import replace

import typer
from rich import print
from rich.logging import RichHandler

from orionrelay.config import SettingsStore, SettingsValidationError, validate_settings
from orionrelay.server import RelayServer


def configure_logging(level: str | None = None) -> None:
    name = (level or os.environ.get("ORION_RELAY_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # websockets logs every failed handshake at INFO.
    logging.getLogger("websockets").setLevel(logging.WARNING)


def serve_cmd(
    *,
    data_dir: str | None,
    host: str | None,
    port: int | None,
    push_port: int | None,
    log_level: str | None,
) -> None:
    """Run the relay in the foreground until interrupted."""

    configure_logging(log_level)
    if data_dir:
        os.environ["ORION_RELAY_DATA_DIR"] = data_dir
    store = SettingsStore()
    settings = store.load()
    overrides: dict[str, object] = {}
    if host:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = str(port)
    if push_port is not None:
        overrides["push_port"] = push_port
    if overrides:
        settings = replace(settings, **overrides)
        try:
            validate_settings(settings)
        except SettingsValidationError as exc:
            print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1) from None

    server = RelayServer(settings, settings_store=store, fallback_ports=True)
    try:
        server.start()
    except OSError as exc:
        print(f"[red]Failed to start relay: {exc}[/red]")
        raise typer.Exit(code=1) from None

    urls = server.urls()
    print(f"[green]Relay running at {urls['http']}[/green]")
    print(f"- Desktop push: {urls['desktop']}")
    print(f"- Mobile push: {urls['mobile']}")
    if settings.retention_days > 0:
        print(f"- Retention: {settings.retention_days} days")

    stop = threading.Event()

    def _handle_signal(signum: int, _frame: object) -> None:
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        print("[yellow]Shutting down relay[/yellow]")
        server.close()
