"""Tick command for ReleasePilot CLI.

Runs a single scheduler poll without starting the server. Useful from
cron or to catch up after downtime.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import typer
from rich.table import Table

from releasepilot.cli import app, console
from releasepilot.cli.utils import get_config, open_database
from releasepilot.notifications import EmailNotifier, build_mailer
from releasepilot.scheduler import SchedulingEngine
from releasepilot.storage import ReleaseStore

if TYPE_CHECKING:
    from releasepilot.config import AppConfig
    from releasepilot.scheduler import TickReport


async def _run_tick(config: AppConfig, notify: bool) -> TickReport:
    db = open_database(config)
    try:
        store = ReleaseStore(db)
        notifier = (
            EmailNotifier(store, build_mailer(config.smtp), config.smtp.default_sender)
            if notify
            else None
        )
        engine = SchedulingEngine(
            store,
            notifier,
            notification_concurrency=config.scheduler.notification_concurrency,
        )
        report = await engine.run_tick()
        await engine.wait_for_notifications()
        return report
    finally:
        db.dispose()


@app.command()
def tick(
    notify: bool = typer.Option(
        True,
        "--notify/--no-notify",
        help="Send notifications for triggered steps",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output the tick report as JSON",
    ),
) -> None:
    """Run one scheduler poll now.

    Starts every due fixed-time step and every dependent step whose
    reference allows it, then exits.

    Examples:
        releasepilot tick
        releasepilot tick --no-notify --json
    """
    report = asyncio.run(_run_tick(get_config(), notify))

    if json_output:
        console.print_json(data=report.to_dict())
    else:
        console.print(
            f"Evaluated {report.evaluated} step(s), "
            f"triggered [green]{len(report.triggered)}[/] in {report.duration_ms} ms"
        )
        if report.triggered:
            for step_id in report.triggered:
                console.print(f"  [green]✓[/] {step_id}")

        if report.has_errors:
            table = Table(title="Errors")
            table.add_column("Phase")
            table.add_column("Step", style="dim")
            table.add_column("Error", style="red")
            for error in report.errors:
                table.add_row(error.phase, error.step_id or "-", error.error)
            console.print(table)

    if report.has_errors:
        raise typer.Exit(1)
