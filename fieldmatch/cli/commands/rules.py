"""Mapping rule inspection commands."""
from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ...config import get_settings
from ...matching import load_rule_table

console = Console()


@click.group(name="rules")
def rules_command():
    """
    Inspect the field mapping rules.

    Rules come from FIELDMATCH_RULES_FILE when set, otherwise the built-in table.
    """
    pass


@rules_command.command(name="list")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def list_rules(as_json: bool):
    """List every rule, highest priority first."""
    table = load_rule_table(get_settings().rules_file)
    if as_json:
        click.echo(json.dumps(table.to_dict(), indent=2))
        return

    view = Table(title=f"Mapping Rules (v{table.version})", border_style="blue")
    view.add_column("Type", style="cyan")
    view.add_column("Priority", justify="right")
    view.add_column("Patterns", style="white")
    view.add_column("Backing fields", style="yellow")
    for rule in sorted(table, key=lambda item: (-item.priority, item.field_type)):
        payload = rule.to_dict()
        view.add_row(
            rule.field_type,
            str(rule.priority),
            ", ".join(payload["patterns"]),
            ", ".join(rule.backing_field_names),
        )
    console.print(view)


@rules_command.command(name="export")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
def export_rules(path: Path):
    """Write the active rule table to PATH as JSON."""
    table = load_rule_table(get_settings().rules_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"version": table.version, "rules": table.to_dict()}, indent=2), encoding="utf-8")
    console.print(f"[green]✓[/green] Wrote {len(table)} rules to {path}")
