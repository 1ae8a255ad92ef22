"""Cache snapshot commands."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict

import click
from rich.console import Console
from rich.table import Table

from ...config import get_settings
from ...matching import ResultCache
from ..runtime import build_kv_store

console = Console()


@click.group(name="cache")
def cache_command():
    """Inspect or clear the persisted match cache."""
    pass


@cache_command.command(name="stats")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def cache_stats(as_json: bool):
    """Show entry counts from the cache snapshot."""
    stats = asyncio.run(_stats())
    if as_json:
        click.echo(json.dumps(stats, indent=2))
        return

    table = Table(title="Match Cache", border_style="green")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="yellow", justify="right")
    for key in ("total", "active", "expired", "max_entries"):
        table.add_row(key.replace("_", " ").title(), str(stats[key]))
    console.print(table)
    if stats["keys"]:
        console.print(f"[dim]Keys: {', '.join(stats['keys'])}[/dim]")


async def _stats() -> Dict[str, Any]:
    settings = get_settings()
    kv_store = build_kv_store(settings)
    try:
        cache = ResultCache(
            max_entries=settings.cache_max_entries,
            default_ttl=settings.cache_ttl_seconds,
            store=kv_store,
            snapshot_key=settings.snapshot_key,
        )
        await cache.load_snapshot()
        return {**cache.stats(), "keys": sorted(cache.keys())}
    finally:
        kv_store.dispose()


@cache_command.command(name="clear")
def cache_clear():
    """Delete the persisted cache snapshot."""
    asyncio.run(_clear())
    console.print("[green]✓[/green] Cache snapshot cleared")


async def _clear() -> None:
    settings = get_settings()
    kv_store = build_kv_store(settings)
    try:
        await ResultCache(store=kv_store, snapshot_key=settings.snapshot_key).clear()
    finally:
        kv_store.dispose()
