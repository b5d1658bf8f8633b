"""grainwatch alerts -- list, inspect and move alerts through their lifecycle."""

from __future__ import annotations

from datetime import datetime

import click

from grainwatch.cli.formatting import (
    format_alert_detail,
    format_alerts,
    format_history,
)
from grainwatch.models.alert import AlertStatus
from grainwatch.models.trigger import Severity

_STATUS_CHOICE = click.Choice([s.value for s in AlertStatus], case_sensitive=False)
_SEVERITY_CHOICE = click.Choice([s.value for s in Severity], case_sensitive=False)


@click.group()
def alerts() -> None:
    """Query and manage alerts."""


@alerts.command("list")
@click.option("--status", "statuses", multiple=True, type=_STATUS_CHOICE, help="Filter by status (repeatable).")
@click.option("--severity", "severities", multiple=True, type=_SEVERITY_CHOICE, help="Filter by severity (repeatable).")
@click.option("--org", "organization_id", default=None, help="Organization id.")
@click.option("--site", "site_id", default=None, help="Site id.")
@click.option("--compound", "compound_id", default=None, help="Compound id.")
@click.option("--cell", "cell_id", default=None, help="Cell id.")
@click.option("--user", "user_id", default=None, help="Assignee user id.")
@click.option("--since", default=None, type=click.DateTime(), help="Only alerts started at or after this UTC time.")
@click.option("-n", "--limit", default=50, type=click.IntRange(1, 1000), help="Maximum number of alerts to show.")
@click.pass_context
def list_alerts(
    ctx: click.Context,
    statuses: tuple[str, ...],
    severities: tuple[str, ...],
    organization_id: str | None,
    site_id: str | None,
    compound_id: str | None,
    cell_id: str | None,
    user_id: str | None,
    since: datetime | None,
    limit: int,
) -> None:
    """List alerts, newest first."""
    from grainwatch.cli import _grainwatch_session
    from grainwatch.models.alert import AlertQuery

    with _grainwatch_session(ctx) as (gw, console):
        query = AlertQuery(
            organization_id=organization_id,
            site_id=site_id,
            compound_id=compound_id,
            cell_id=cell_id,
            user_id=user_id,
            statuses=frozenset(AlertStatus(s.upper()) for s in statuses),
            severities=frozenset(Severity(s.upper()) for s in severities),
            started_after=since,
            limit=limit,
        )
        format_alerts(gw.list_alerts(query), console)


@alerts.command("show")
@click.argument("alert_id")
@click.pass_context
def show(ctx: click.Context, alert_id: str) -> None:
    """Show every field of ALERT_ID."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        format_alert_detail(gw.get_alert(alert_id), console)


@alerts.command("ack")
@click.argument("alert_id")
@click.option("--actor", "actor_id", default=None, help="User performing the change.")
@click.pass_context
def ack(ctx: click.Context, alert_id: str, actor_id: str | None) -> None:
    """Acknowledge ALERT_ID."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        alert = gw.acknowledge(alert_id, actor_id)
        console.print(f"Alert [yellow]{alert.id[:8]}[/yellow] is now {alert.status.value}")


@alerts.command("set-status")
@click.argument("alert_id")
@click.argument("status", type=_STATUS_CHOICE)
@click.option("--actor", "actor_id", default=None, help="User performing the change.")
@click.option("--reason", default=None, help="Note stored in the alert history.")
@click.pass_context
def set_status(
    ctx: click.Context, alert_id: str, status: str, actor_id: str | None, reason: str | None
) -> None:
    """Move ALERT_ID to STATUS."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        alert = gw.set_status(alert_id, AlertStatus(status.upper()), actor_id, reason=reason)
        console.print(f"Alert [yellow]{alert.id[:8]}[/yellow] is now {alert.status.value}")


@alerts.command("assign")
@click.argument("alert_id")
@click.argument("user_id", required=False)
@click.option("--actor", "actor_id", default=None, help="User performing the change.")
@click.pass_context
def assign(ctx: click.Context, alert_id: str, user_id: str | None, actor_id: str | None) -> None:
    """Assign ALERT_ID to USER_ID (omit USER_ID to unassign)."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        alert = gw.assign(alert_id, user_id, actor_id)
        who = alert.user.name if alert.user else "nobody"
        console.print(f"Alert [yellow]{alert.id[:8]}[/yellow] assigned to {who}")


@alerts.command("history")
@click.argument("alert_id")
@click.pass_context
def history(ctx: click.Context, alert_id: str) -> None:
    """Show the status history of ALERT_ID."""
    from grainwatch.cli import _grainwatch_session

    with _grainwatch_session(ctx) as (gw, console):
        format_history(gw.history(alert_id), console)
