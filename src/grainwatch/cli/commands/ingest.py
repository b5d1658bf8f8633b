"""grainwatch ingest -- record sensor readings and evaluate triggers."""

from __future__ import annotations

import json
from typing import IO

import click

from grainwatch.cli.formatting import format_ingest_result


@click.command()
@click.argument("file", type=click.File("r"))
@click.option("--no-notify", is_flag=True, help="Write alerts but send no notifications.")
@click.option("--parallel", is_flag=True, help="Evaluate on the worker pool.")
@click.option("--strict", is_flag=True, help="Fail on records from unknown sensors.")
@click.pass_context
def ingest(ctx: click.Context, file: IO[str], no_notify: bool, parallel: bool, strict: bool) -> None:
    """Ingest readings from a JSON FILE ('-' for stdin).

    FILE holds an array of records such as
    {"sensorId": "s1", "temperature": 21.5, "humidity": 60, "recordedAt": "2024-05-01T12:00:00Z"}.
    """
    from grainwatch.cli import _grainwatch_session

    payload = json.load(file)
    records = payload if isinstance(payload, list) else [payload]
    with _grainwatch_session(ctx, create=True) as (gw, console):
        result = gw.ingest(records, notify=not no_notify, parallel=parallel, strict=strict)
        format_ingest_result(result, console)
