from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.config_cmds import config_set_cmd, config_show_cmd
from .commands.items_cmds import clear_cmd, items_cmd
from .commands.server_cmds import serve_cmd

app = typer.Typer(help="orion-relay: share text and files between desktop and phone")
config_app = typer.Typer(help="Show or change relay settings")
app.add_typer(config_app, name="config")


@app.command()
def serve(
    data_dir: str = typer.Option(None, help="Directory for data.json and uploads"),
    host: str = typer.Option(None, help="Host to bind (overrides settings)"),
    port: int = typer.Option(None, help="HTTP port (overrides settings)"),
    push_port: int = typer.Option(None, help="Dedicated push port (default: same as HTTP)"),
    log_level: str = typer.Option(None, help="Log level, e.g. DEBUG"),
) -> None:
    """Run the relay server."""

    serve_cmd(
        data_dir=data_dir, host=host, port=port, push_port=push_port, log_level=log_level
    )


@app.command()
def items(
    data_dir: str = typer.Option(None, help="Directory for data.json and uploads"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """List stored items."""

    items_cmd(data_dir=data_dir, as_json=as_json)


@app.command()
def clear(
    data_dir: str = typer.Option(None, help="Directory for data.json and uploads"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    uploads: bool = typer.Option(False, "--uploads", help="Also delete uploaded files"),
) -> None:
    """Delete all stored items."""

    clear_cmd(data_dir=data_dir, yes=yes, remove_uploads=uploads)


@config_app.command("show")
def config_show(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show effective settings."""

    config_show_cmd(as_json=as_json)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting name"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Save a setting."""

    config_set_cmd(key=key, value=value)


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


if __name__ == "__main__":
    app()
