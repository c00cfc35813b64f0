from __future__ import annotations

import json

import typer
from rich import print
from rich.markup import escape

from orionrelay.fs_paths import get_data_dir
from orionrelay.models import ItemKind
from orionrelay.store import DATA_FILENAME, ItemStore, ItemStoreError
from orionrelay.uploads import UPLOADS_DIRNAME, UploadDir


def _store(data_dir: str | None) -> ItemStore:
    return ItemStore(get_data_dir(data_dir) / DATA_FILENAME)


def _preview(text: str, width: int = 60) -> str:
    flat = " ".join(text.split())
    if len(flat) <= width:
        return flat
    return flat[: width - 3] + "..."


def items_cmd(*, data_dir: str | None, as_json: bool) -> None:
    """List stored items, oldest first."""

    try:
        data = _store(data_dir).load_all()
    except ItemStoreError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from None
    if as_json:
        typer.echo(json.dumps(data.to_dict(), ensure_ascii=False, indent=2))
        return
    if not data.items:
        print("[yellow]No items[/yellow]")
        return
    for item in data.items:
        names = item.file_names()
        if item.kind is ItemKind.FILE and names is not None:
            body = f"[cyan]file[/cyan] {escape(names[0])}"
        else:
            body = escape(_preview(item.content))
        when = item.timestamp[:19].replace("T", " ")
        print(f"{item.id}  {when}  [bold]{item.origin.value}[/bold]  {body}")


def clear_cmd(*, data_dir: str | None, yes: bool, remove_uploads: bool) -> None:
    """Empty the item log."""

    if not yes and not typer.confirm("Delete all items?"):
        raise typer.Exit(code=1)
    store = _store(data_dir)
    try:
        store.clear()
    except ItemStoreError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from None
    removed = 0
    if remove_uploads:
        uploads = UploadDir(get_data_dir(data_dir) / UPLOADS_DIRNAME)
        if uploads.path.is_dir():
            for path in sorted(uploads.path.iterdir()):
                if path.is_file() and uploads.remove(path.name):
                    removed += 1
    print("[green]Cleared item log[/green]")
    if removed:
        print(f"- Removed {removed} uploaded files")
