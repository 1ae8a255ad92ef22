"""Page scanning and matching commands."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Set

import click
from rich.console import Console
from rich.table import Table

from ...config import get_settings
from ...matching import MatchCancelledError, MatchOrchestrator
from ...models import DetectedField, MatchReport
from ...scanner import FieldScanner, PageFieldWatcher, collect_page_elements, highlight_fields
from ..runtime import open_orchestrator, open_page

console = Console()
logger = logging.getLogger(__name__)


def _fields_table(fields: List[DetectedField]) -> Table:
    table = Table(title="Detected Fields", show_header=True, header_style="bold cyan", border_style="cyan")
    table.add_column("Ref", style="yellow")
    table.add_column("Kind")
    table.add_column("Type", style="green")
    table.add_column("Confidence", justify="right")
    table.add_column("Label / Name", style="white")
    for field in fields:
        ids = field.identifiers
        table.add_row(
            field.ref[:48],
            field.element_kind,
            field.inferred_type,
            f"{field.confidence}%",
            (ids.label or ids.name or ids.placeholder or "")[:40],
        )
    return table


def _print_report(orchestrator: MatchOrchestrator, report: MatchReport) -> None:
    table = Table(title="Matches", show_header=True, header_style="bold cyan", border_style="green")
    table.add_column("Field", style="yellow")
    table.add_column("Type", style="green")
    table.add_column("Confidence", justify="right")
    table.add_column("Source")
    table.add_column("Top suggestion", style="white")
    for match in report.matches:
        suggestions = orchestrator.get_suggestions(match, limit=1)
        table.add_row(
            match.field.ref[:40],
            match.field_type,
            f"{match.confidence}%",
            match.source,
            suggestions[0].label if suggestions else "-",
        )
    console.print(table)

    for missing in report.missing_data:
        console.print(f"[yellow]No stored data for[/yellow] {missing.field_type} ({len(missing.fields)} field(s))")
    for error in report.errors:
        console.print(f"[red]{error.type}:[/red] {error.message} [dim]({', '.join(error.affected_types)})[/dim]")
    if report.unmatched:
        console.print(f"[dim]{len(report.unmatched)} field(s) had no mapping rule[/dim]")


@click.command(name="scan")
@click.argument("url")
@click.option("--headed", is_flag=True, help="Show the browser window")
@click.option("--highlight", is_flag=True, help="Outline confident fields on the page")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def scan_command(url: str, headed: bool, highlight: bool, as_json: bool):
    """Detect personal-data fields on URL."""
    fields = asyncio.run(_scan(url, headed, highlight))
    if as_json:
        click.echo(json.dumps([field.to_dict() for field in fields], indent=2))
        return
    console.print(_fields_table(fields))


async def _scan(url: str, headed: bool, highlight: bool) -> List[DetectedField]:
    settings = get_settings()
    async with open_page(url, headless=False if headed else None, settings=settings) as page:
        fields = FieldScanner().scan(await collect_page_elements(page))
        if highlight:
            await highlight_fields(page, fields, min_confidence=settings.highlight_min_confidence)
        return fields


@click.command(name="match")
@click.argument("url")
@click.option("--headed", is_flag=True, help="Show the browser window")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def match_command(url: str, headed: bool, as_json: bool):
    """Scan URL and match its fields against stored personal data."""
    asyncio.run(_match(url, headed, as_json))


async def _match(url: str, headed: bool, as_json: bool) -> None:
    settings = get_settings()
    async with open_page(url, headless=False if headed else None, settings=settings) as page:
        fields = FieldScanner().scan(await collect_page_elements(page))
        async with open_orchestrator(settings) as (orchestrator, _):
            report = await orchestrator.match_fields_to_store(fields)
            if as_json:
                click.echo(json.dumps(report.to_dict(), indent=2, default=str))
            else:
                console.print(_fields_table(fields))
                _print_report(orchestrator, report)


@click.command(name="watch")
@click.argument("url")
@click.option("--duration", type=float, default=30.0, show_default=True, help="Seconds to keep watching")
@click.option("--headed", is_flag=True, help="Show the browser window")
def watch_command(url: str, duration: float, headed: bool):
    """Re-scan and re-match URL whenever its forms change."""
    console.print("[cyan]Watching for form changes... Press Ctrl+C to stop[/cyan]\n")
    try:
        asyncio.run(_watch(url, duration, headed))
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch stopped[/yellow]")


async def _watch(url: str, duration: float, headed: bool) -> None:
    settings = get_settings()
    pending: Set[asyncio.Task] = set()

    async with open_page(url, headless=False if headed else None, settings=settings) as page:
        async with open_orchestrator(settings) as (orchestrator, _):

            async def match_and_print(fields: List[DetectedField]) -> None:
                try:
                    report = await orchestrator.match_latest(fields)
                except MatchCancelledError:
                    logger.debug("Match superseded by a newer scan")
                    return
                console.print(f"[bold]{len(fields)} field(s) detected[/bold]")
                _print_report(orchestrator, report)

            def finished(task: asyncio.Task) -> None:
                pending.discard(task)
                if not task.cancelled() and task.exception() is not None:
                    logger.error("Watch match failed", exc_info=task.exception())

            def on_fields(fields: List[DetectedField]) -> None:
                task = asyncio.ensure_future(match_and_print(fields))
                pending.add(task)
                task.add_done_callback(finished)

            watcher = PageFieldWatcher(
                page,
                FieldScanner(listener=on_fields),
                debounce_seconds=settings.rescan_debounce_seconds,
            )
            await watcher.start()
            try:
                await asyncio.sleep(duration)
            finally:
                watcher.stop()
                await asyncio.gather(*pending, return_exceptions=True)
            console.print(f"[dim]{watcher.scan_count} scan(s) run[/dim]")
