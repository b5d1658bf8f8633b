"""Grainwatch CLI -- terminal interface for alerts, triggers and ingestion.

This module is NEVER imported from grainwatch/__init__.py.
It is only loaded via the ``grainwatch`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import TYPE_CHECKING

try:
    import click
except ImportError:
    raise ImportError(
        "CLI dependencies not installed. Install with: pip install grainwatch[cli]"
    ) from None

from grainwatch.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from grainwatch.grainwatch import Grainwatch


@click.group()
@click.option(
    "--db",
    default="grainwatch.db",
    envvar="GRAINWATCH_DB",
    help="Path to the Grainwatch database.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log engine activity to stderr.")
@click.pass_context
def cli(ctx: click.Context, db: str, verbose: bool) -> None:
    """Grainwatch: trigger evaluation and alerts for grain storage."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _get_grainwatch(ctx: click.Context, *, create: bool = False) -> "Grainwatch":  # noqa: F821
    """Open Grainwatch from Click context.

    Configuration comes from ``GRAINWATCH_*`` environment variables; the
    --db option wins over them. Delivery goes to the logging channel, and
    webhooks are POSTed for real.
    """
    from grainwatch.grainwatch import Grainwatch
    from grainwatch.models.config import GrainwatchConfig
    from grainwatch.models.trigger import ActionType
    from grainwatch.notify.channels import LoggingChannel, WebhookChannel

    db_path = ctx.obj["db_path"]
    if not create and db_path != ":memory:" and not os.path.exists(db_path):
        format_error(f"Database not found: {db_path}", get_console())
        raise SystemExit(1)

    log_channel = LoggingChannel()
    webhook = WebhookChannel()
    ctx.call_on_close(webhook.close)
    channels = {
        ActionType.EMAIL: log_channel,
        ActionType.SMS: log_channel,
        ActionType.PUSH: log_channel,
        ActionType.WEBHOOK: webhook,
    }
    config = GrainwatchConfig.from_env(db_path=db_path)
    return Grainwatch.open(config=config, channels=channels)


@contextmanager
def _grainwatch_session(
    ctx: click.Context, *, create: bool = False
) -> Iterator[tuple[Grainwatch, Console]]:
    """Open Grainwatch, yield (gw, console), and handle cleanup.

    Waits for queued notifications before closing, and formats any
    exception as a CLI error with exit status 1.
    """
    console = get_console()
    try:
        gw = _get_grainwatch(ctx, create=create)
        try:
            yield gw, console
            gw.drain()
        finally:
            gw.close()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from grainwatch.cli.commands.alerts import alerts  # noqa: E402
from grainwatch.cli.commands.triggers import triggers  # noqa: E402
from grainwatch.cli.commands.ingest import ingest  # noqa: E402
from grainwatch.cli.commands.sweep import prune, sweep  # noqa: E402

cli.add_command(alerts)
cli.add_command(triggers)
cli.add_command(ingest)
cli.add_command(sweep)
cli.add_command(prune)
