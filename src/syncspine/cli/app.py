"""
Root Typer application for the syncspine CLI.

Operator commands for checking and exercising a remote store:

- ``syncspine status``        probe the store and show the connection indicator
- ``syncspine load``          load every collection and print status and counts
- ``syncspine watch ENTITY``  subscribe to one collection and print changes
"""

from __future__ import annotations

import asyncio

import typer
from typer import Typer

from syncspine.cli.utils import console, fail, load_settings, make_manager, output_load_report
from syncspine.core.entities import EntityType
from syncspine.core.errors import ConnectivityError, SyncError
from syncspine.core.logging import configure_logging

app = Typer(
    name="syncspine",
    help="syncspine -- client-side sync and cache layer for remote collections.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_URL = typer.Option(None, "--url", "-u", help="Remote store URL (overrides SYNCSPINE_REMOTE_URL).")
_KEY = typer.Option(None, "--key", "-k", help="API key (overrides SYNCSPINE_REMOTE_KEY).")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from syncspine import __version__

        typer.echo(f"syncspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at the configured level."),
) -> None:
    """syncspine CLI -- probe, load and watch remote collections."""
    settings = load_settings()
    configure_logging(
        level=settings.log_level if verbose else "WARNING",
        json_format=settings.json_logs,
    )


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("status")
def status(url: str | None = _URL, key: str | None = _KEY) -> None:
    """Probe the remote store and report connectivity."""
    manager = make_manager(url, key)

    async def _run() -> bool:
        try:
            await manager.check_connection()
            return True
        except ConnectivityError:
            return False
        finally:
            await manager.close()

    online = asyncio.run(_run())
    style = "green" if online else "bold red"
    console.print(f"[{style}]{manager.indicator.message}[/{style}]  {manager.settings.remote_url}")
    if not online:
        raise typer.Exit(code=1)


@app.command("load")
def load(
    url: str | None = _URL,
    key: str | None = _KEY,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Load every collection and print per-collection status."""
    manager = make_manager(url, key)

    async def _run():
        try:
            return await manager.initialize()
        finally:
            # Keep the collections for the report; only release channels and the client.
            await manager.unsubscribe_all()
            await manager.remote.close()

    report = asyncio.run(_run())
    output_load_report(manager, report, as_json=json_out)


@app.command("watch")
def watch(
    entity: str = typer.Argument(..., help="Collection to watch (e.g. projects)."),
    seconds: float = typer.Option(30.0, "--seconds", "-s", min=0, help="How long to watch."),
    url: str | None = _URL,
    key: str | None = _KEY,
) -> None:
    """Subscribe to one collection and print its size after every change."""
    try:
        entity_type = EntityType.parse(entity)
    except ValueError as e:
        fail(e)

    manager = make_manager(url, key)

    def _print_change(changed: EntityType) -> None:
        console.print(f"[cyan]{changed.value}[/cyan] changed: {len(manager.get_collection(changed))} records")

    async def _run() -> None:
        async with manager:
            await manager.ensure_loaded(entity_type)
            manager.on_change(entity_type, _print_change)
            handle = await manager.subscribe(entity_type)
            console.print(f"Watching [bold]{entity_type.value}[/bold] on {handle.channel_name}")
            await asyncio.sleep(seconds)

    try:
        asyncio.run(_run())
    except SyncError as e:
        fail(e)
