"""grainwatch triggers -- list, load and delete triggers."""

from __future__ import annotations

import json
from typing import IO

import click

from grainwatch.cli.formatting import format_triggers


@click.group()
def triggers() -> None:
    """Manage triggers."""


@triggers.command("list")
@click.option("--active-only", is_flag=True, help="Hide inactive triggers.")
@click.pass_context
def list_triggers(ctx: click.Context, active_only: bool) -> None:
    """List stored triggers."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        items = gw.list_triggers()
        if active_only:
            items = [t for t in items if t.is_active]
        format_triggers(items, console)


@triggers.command("add")
@click.argument("file", type=click.File("r"))
@click.pass_context
def add(ctx: click.Context, file: IO[str]) -> None:
    """Validate and save triggers from a JSON FILE (object or array; '-' for stdin)."""
    from grainwatch.cli import _grainwatch_session

    payload = json.load(file)
    entries = payload if isinstance(payload, list) else [payload]
    with _grainwatch_session(ctx, create=True) as (gw, console):
        for entry in entries:
            trigger = gw.save_trigger(entry)
            console.print(f"Saved trigger [yellow]{trigger.id[:8]}[/yellow] {trigger.name}")


@triggers.command("delete")
@click.argument("trigger_id")
@click.pass_context
def delete(ctx: click.Context, trigger_id: str) -> None:
    """Delete TRIGGER_ID. Its alerts are kept."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        gw.delete_trigger(trigger_id)
        console.print(f"Deleted trigger [yellow]{trigger_id}[/yellow]")
