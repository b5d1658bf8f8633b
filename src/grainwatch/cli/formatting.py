"""Rich formatting helpers for the Grainwatch CLI.

Provides functions that format SDK data structures for terminal display.
Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from grainwatch.models.alert import AlertEventInfo, AlertInfo
    from grainwatch.models.evaluation import EvaluationResult
    from grainwatch.models.reading import IngestResult
    from grainwatch.models.trigger import Trigger

_SEVERITY_STYLES = {
    "LOW": "dim",
    "MEDIUM": "yellow",
    "HIGH": "red",
    "CRITICAL": "bold red",
}

_STATUS_STYLES = {
    "OPEN": "red",
    "ACKNOWLEDGED": "yellow",
    "IN_PROGRESS": "cyan",
    "RESOLVED": "green",
    "DISMISSED": "dim",
}


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def _styled(value: str, styles: dict[str, str]) -> str:
    style = styles.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value is not None else "-"


def format_alerts(alerts: Sequence[AlertInfo], console: Console) -> None:
    """Display alerts in a compact table, newest first."""
    if not alerts:
        console.print("[dim]No alerts.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("ID", style="yellow", width=8)
    table.add_column("Started", style="dim")
    table.add_column("Severity")
    table.add_column("Status")
    table.add_column("Location")
    table.add_column("Value", justify="right")
    table.add_column("Title")

    for alert in alerts:
        location = " / ".join(
            ref.name for ref in (alert.site, alert.compound, alert.cell) if ref is not None
        ) or (alert.cell_id or "-")
        value = f"{alert.value:g}{alert.unit or ''}" if alert.value is not None else ""
        table.add_row(
            alert.id[:8],
            _fmt_time(alert.started_at),
            _styled(alert.severity.value, _SEVERITY_STYLES),
            _styled(alert.status.value, _STATUS_STYLES),
            escape(location),
            value,
            escape(alert.title),
        )

    console.print(table)


def format_alert_detail(alert: AlertInfo, console: Console) -> None:
    """Display one alert with every field."""
    console.print(f"[yellow]alert {alert.id}[/yellow]")
    console.print(f"  Title:     {escape(alert.title)}")
    console.print(f"  Severity:  {_styled(alert.severity.value, _SEVERITY_STYLES)}")
    console.print(f"  Status:    {_styled(alert.status.value, _STATUS_STYLES)}")
    console.print(f"  Trigger:   {alert.trigger_id or '[dim](deleted)[/dim]'}")
    if alert.cell is not None:
        console.print(f"  Cell:      {escape(alert.cell.name)} ({alert.cell.id})")
    if alert.metric is not None and alert.value is not None:
        console.print(
            f"  Reading:   {alert.metric.value} = {alert.value:g}{alert.unit or ''}"
            + (f" (threshold {alert.threshold_value:g})" if alert.threshold_value is not None else "")
        )
    if alert.user is not None:
        console.print(f"  Assignee:  {escape(alert.user.name)}")
    console.print(f"  Started:   {_fmt_time(alert.started_at)}")
    if alert.resolved_at is not None:
        console.print(f"  Resolved:  {_fmt_time(alert.resolved_at)}")


def format_history(events: Sequence[AlertEventInfo], console: Console) -> None:
    """Display an alert's status history, oldest first."""
    if not events:
        console.print("[dim]No history.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Time", style="dim")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Actor")
    table.add_column("Reason")

    for event in events:
        table.add_row(
            _fmt_time(event.created_at),
            event.from_status.value if event.from_status else "-",
            _styled(event.to_status.value, _STATUS_STYLES),
            event.actor_id or "[dim]engine[/dim]",
            escape(event.reason or ""),
        )

    console.print(table)


def format_triggers(triggers: Sequence[Trigger], console: Console) -> None:
    """Display triggers in a compact table."""
    if not triggers:
        console.print("[dim]No triggers.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("ID", style="yellow", width=8)
    table.add_column("Name")
    table.add_column("Scope", style="cyan")
    table.add_column("Logic", width=5)
    table.add_column("Conditions", justify="right")
    table.add_column("Severity")
    table.add_column("Active")

    for trigger in triggers:
        scope = trigger.scope_type.value
        if trigger.scope_id:
            scope = f"{scope}:{trigger.scope_id}"
        table.add_row(
            trigger.id[:8],
            escape(trigger.name),
            escape(scope),
            trigger.condition_logic.value,
            str(len(trigger.conditions)),
            _styled(trigger.severity.value, _SEVERITY_STYLES),
            "yes" if trigger.is_active else "[dim]no[/dim]",
        )

    console.print(table)


def format_evaluations(results: Sequence[EvaluationResult], console: Console) -> None:
    """Summarise evaluation outcomes, listing errors individually."""
    counts = Counter(r.outcome for r in results)
    if not counts:
        console.print("[dim]Nothing evaluated.[/dim]")
        return
    summary = ", ".join(f"{n} {outcome}" for outcome, n in sorted(counts.items()))
    console.print(f"Evaluated {len(results)}: {summary}")
    for result in results:
        if result.outcome == "error":
            console.print(
                f"  [red]error[/red] trigger {result.trigger_id[:8]} "
                f"cell {result.cell_id}: {escape(result.error or '')}"
            )


def format_ingest_result(result: IngestResult, console: Console) -> None:
    """Display ingestion counts and what the engine did with them."""
    console.print(
        f"Accepted [green]{result.accepted_count}[/green] readings, "
        f"{result.duplicates} duplicates, "
        f"{len(result.unknown_sensors)} from unknown sensors"
    )
    for identifier in sorted(set(result.unknown_sensors)):
        console.print(f"  [yellow]unknown sensor[/yellow] {escape(identifier)}")
    if result.evaluations:
        format_evaluations(result.evaluations, console)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
