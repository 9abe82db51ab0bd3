"""
CLI utility helpers -- output formatting and manager construction.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from syncspine.core.errors import SyncError
from syncspine.core.result import Err, Result
from syncspine.core.settings import SyncSettings, get_settings
from syncspine.sync.manager import DatabaseManager
from syncspine.sync.state import CollectionStatus

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {
    CollectionStatus.IDLE: "dim",
    CollectionStatus.LOADING: "yellow",
    CollectionStatus.LOADED: "green",
    CollectionStatus.FAILED: "bold red",
}


# ── Manager helper ───────────────────────────────────────────────────────


def load_settings(url: str | None = None, key: str | None = None) -> SyncSettings:
    """Cached settings with optional ``--url`` / ``--key`` overrides."""
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if url is not None:
        overrides["remote_url"] = url
    if key is not None:
        overrides["remote_key"] = key
    return settings.model_copy(update=overrides) if overrides else settings


def make_manager(url: str | None = None, key: str | None = None) -> DatabaseManager:
    """Build a :class:`DatabaseManager`; exits with code 1 on bad configuration."""
    try:
        return DatabaseManager.from_settings(load_settings(url, key))
    except SyncError as e:
        fail(e)


# ── Output helpers ───────────────────────────────────────────────────────


def fail(error: Exception) -> None:
    """Print *error* and exit with code 1."""
    label = type(error).__name__
    err_console.print(f"[bold red]Error[/bold red] ({label}): {error}")
    raise typer.Exit(code=1)


def output_load_report(
    manager: DatabaseManager,
    report: dict[Any, Result[int]],
    *,
    as_json: bool = False,
) -> None:
    """Render per-collection status, record count and error."""
    rows = []
    for entity, outcome in report.items():
        rows.append({
            "collection": entity.value,
            "status": manager.collection_status(entity).value,
            "records": outcome.unwrap_or(0),
            "error": str(outcome.error) if isinstance(outcome, Err) else "",
        })

    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return

    table = Table(title="Collections", show_lines=False, pad_edge=False)
    for column in ("collection", "status", "records", "error"):
        table.add_column(column, overflow="fold")
    for row in rows:
        style = _STATUS_STYLE[CollectionStatus(row["status"])]
        table.add_row(
            row["collection"],
            f"[{style}]{row['status']}[/{style}]",
            str(row["records"]),
            row["error"],
        )
    console.print(table)
