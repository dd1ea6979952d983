"""
CLI utility helpers: hub construction, async bridging and output formatting.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Coroutine
from dataclasses import asdict
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from tether.core.errors import TetherError
from tether.core.logging import configure_logging
from tether.core.settings import TetherSettings
from tether.hub import IntegrationHub

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)


# ── Hub helper ───────────────────────────────────────────────────────────


def build_hub(*, contingency_db: Path | None = None) -> IntegrationHub:
    """Build a hub from the environment, with CLI overrides applied."""
    overrides: dict[str, Any] = {}
    if contingency_db is not None:
        overrides["contingency_db_path"] = contingency_db
    settings = TetherSettings(**overrides)
    configure_logging(level=settings.log_level, json_format=settings.log_json, stream=sys.stderr)
    return IntegrationHub.from_settings(settings)


def fail(error: TetherError) -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red] ({type(error).__name__}): {error.message}")
    raise typer.Exit(code=1) from error


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion; integration errors exit with code 1."""
    try:
        return asyncio.run(coro)
    except TetherError as e:
        fail(e)


# ── Output helpers ───────────────────────────────────────────────────────


def to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render one object or a list of objects to the terminal."""
    if as_json:
        payload = [to_dict(d) for d in data] if isinstance(data, list | tuple) else to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        print_table([to_dict(d) for d in data], title=title)
    else:
        print_dict(to_dict(data), title=title)


def print_table(rows: list[dict[str, Any]], *, title: str = "", columns: list[str] | None = None) -> None:
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(col) is None else str(row.get(col)) for col in columns))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
