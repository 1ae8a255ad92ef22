#!/usr/bin/env python3
"""Main CLI entry point for fieldmatch."""
from __future__ import annotations

import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console

from ..config import get_settings
from .commands import cache, rules, scan

console = Console()


@click.group()
@click.option("--log-level", default=None, help="Logging level (defaults to FIELDMATCH_LOG_LEVEL)")
@click.version_option(version="0.1.0", prog_name="fieldmatch")
def cli(log_level: str | None):
    """
    fieldmatch - match web form fields to stored personal data.

    Scan pages for personal-data fields, match them against the record
    store and inspect the mapping rules and match cache.
    """
    load_dotenv()
    get_settings.cache_clear()
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.WARNING), format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# Register all commands
cli.add_command(scan.scan_command)
cli.add_command(scan.match_command)
cli.add_command(scan.watch_command)
cli.add_command(rules.rules_command)
cli.add_command(cache.cache_command)


def main():
    """Entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
