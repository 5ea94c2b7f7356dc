"""Plans command for ReleasePilot CLI."""

from datetime import datetime

import typer
from rich.table import Table

from releasepilot.cli import app, console
from releasepilot.cli.utils import get_config, open_database
from releasepilot.schemas import PlanRead, StepRead
from releasepilot.storage import (
    Database,
    PlanStatus,
    ReleasePlanRepository,
    ReleaseStepRepository,
    StepStatus,
)

_STEP_STATUS_STYLES = {
    StepStatus.NOT_STARTED: "[dim]not started[/]",
    StepStatus.STARTED: "[blue]started[/]",
    StepStatus.IN_PROGRESS: "[yellow]in progress[/]",
    StepStatus.COMPLETED: "[green]✓ completed[/]",
    StepStatus.FAILED: "[red]✗ failed[/]",
}

_PLAN_STATUS_STYLES = {
    PlanStatus.PLANNING: "[dim]planning[/]",
    PlanStatus.ACTIVE: "[blue]active[/]",
    PlanStatus.COMPLETED: "[green]completed[/]",
    PlanStatus.CANCELLED: "[red]cancelled[/]",
}


def _format_datetime(dt: datetime | None) -> str:
    """Format datetime for display."""
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M")


@app.command()
def plans(
    plan_id: str | None = typer.Option(
        None,
        "--id",
        help="Show the steps of a specific release plan",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output results as JSON",
    ),
) -> None:
    """List release plans.

    Examples:
        releasepilot plans
        releasepilot plans --id 3f2a...
        releasepilot plans --json
    """
    db = open_database(get_config())
    try:
        if plan_id:
            _show_plan(db, plan_id, json_output)
        else:
            _list_plans(db, json_output)
    finally:
        db.dispose()


def _list_plans(db: Database, json_output: bool) -> None:
    with db.session_scope() as session:
        rows = [PlanRead.model_validate(p) for p in ReleasePlanRepository(session).get_all()]

    if json_output:
        console.print_json(data=[row.model_dump(mode="json") for row in rows])
        return

    if not rows:
        console.print("[yellow]No release plans found.[/]")
        return

    table = Table(title="Release Plans")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Scheduled", style="dim")

    for plan in rows:
        table.add_row(
            plan.id[:8],
            plan.name,
            plan.version,
            _PLAN_STATUS_STYLES.get(plan.status, plan.status.value),
            _format_datetime(plan.scheduled_date),
        )

    console.print(table)
    console.print()
    console.print(f"[dim]Showing {len(rows)} plan(s)[/]")
    console.print("[dim]Use --id <id> to see the steps of a plan[/]")


def _show_plan(db: Database, plan_id: str, json_output: bool) -> None:
    with db.session_scope() as session:
        repo = ReleasePlanRepository(session)
        plan = repo.get_by_id(plan_id)

        if plan is None:
            # Try prefix match
            matches = [p for p in repo.get_all() if p.id.startswith(plan_id)]
            if len(matches) > 1:
                console.print(f"[red]Error:[/] Multiple plans match '{plan_id}'")
                raise typer.Exit(1)
            plan = matches[0] if matches else None

        if plan is None:
            console.print(f"[red]Error:[/] Release plan not found: {plan_id}")
            raise typer.Exit(1)

        detail = PlanRead.model_validate(plan)
        steps = [
            StepRead.model_validate(s)
            for s in ReleaseStepRepository(session).get_by_plan(plan.id)
        ]

    if json_output:
        data = detail.model_dump(mode="json")
        data["steps"] = [step.model_dump(mode="json") for step in steps]
        console.print_json(data=data)
        return

    console.print(f"[bold]{detail.name} {detail.version}[/] {_PLAN_STATUS_STYLES[detail.status]}")
    console.print()

    table = Table(title="Steps")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Scheduling")
    table.add_column("Status")
    table.add_column("Started", style="dim")

    for step in steps:
        table.add_row(
            str(step.order),
            step.name,
            step.category.value.replace("_", " "),
            step.scheduling_type.value.replace("_", " "),
            _STEP_STATUS_STYLES.get(step.status, step.status.value),
            _format_datetime(step.started_at),
        )

    console.print(table)
