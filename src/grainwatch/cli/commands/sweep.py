"""grainwatch sweep / prune -- periodic maintenance commands."""

from __future__ import annotations

import click

from grainwatch.cli.formatting import format_evaluations


@click.command()
@click.option("--no-notify", is_flag=True, help="Write alerts but send no notifications.")
@click.pass_context
def sweep(ctx: click.Context, no_notify: bool) -> None:
    """Re-evaluate every active trigger against every cell in its scope."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        format_evaluations(gw.sweep(notify=not no_notify), console)


@click.command()
@click.pass_context
def prune(ctx: click.Context) -> None:
    """Delete readings older than the retention window."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        deleted = gw.prune()
        console.print(f"Pruned [green]{deleted}[/green] readings")
