"""Release step API routes for ReleasePilot.

Status edits go through the scheduling engine so history, notifications,
plan status and dependent steps stay consistent with automatic triggers.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Response

from releasepilot.api.dependencies import (
    CurrentUser,
    DatabaseDep,
    EngineDep,
    OptionalScheduler,
    StoreDep,
    require_role,
)
from releasepilot.api.schemas import (
    SCHEDULING_FIELDS,
    HistoryRead,
    StepCreate,
    StepRead,
    StepUpdate,
    TriggerRequest,
)
from releasepilot.scheduler import to_wall_time, validate_scheduling
from releasepilot.storage import (
    ReleasePlanRepository,
    ReleaseStep,
    ReleaseStepRepository,
    UserRole,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/steps")

# Columns that cannot be cleared through PATCH
_REQUIRED_FIELDS = frozenset({"name", "category", "order", "scheduling_type", "timezone"})


def _store_wall_time(step: ReleaseStep) -> None:
    if step.scheduled_time is not None:
        step.scheduled_time = to_wall_time(step.scheduled_time, step.timezone)


@router.post("", response_model=StepRead, status_code=201)
async def create_step(
    body: StepCreate,
    user: CurrentUser,
    db: DatabaseDep,
    engine: EngineDep,
    scheduler: OptionalScheduler,
) -> StepRead:
    """Create a step in a release plan.

    Raises:
        HTTPException: If the plan is not found.
        SchedulingConfigError: If the scheduling fields are invalid (400).
    """
    with db.session_scope() as session:
        if ReleasePlanRepository(session).get_by_id(body.release_plan_id) is None:
            raise HTTPException(status_code=404, detail="Release plan not found")

        repo = ReleaseStepRepository(session)
        step = ReleaseStep(**body.model_dump())
        _store_wall_time(step)
        validate_scheduling(step, repo.get_by_plan(body.release_plan_id))
        repo.create(step)
        result = StepRead.model_validate(step)

    logger.info(f"Step '{step.name}' ({step.id}) created by {user.id}")
    if scheduler is not None:
        scheduler.schedule_step(step)
    if step.team_lead_id:
        engine.notify_assignment(step, step.team_lead_id, "team_lead")

    await engine.publish("step_created", result)
    await engine.refresh_plan_status(step.release_plan_id)
    return result


@router.get("/{step_id}", response_model=StepRead)
async def get_step(step_id: str, store: StoreDep) -> StepRead:
    """Get a step by id.

    Raises:
        HTTPException: If the step is not found.
    """
    step = await store.get_step(step_id)
    if step is None:
        raise HTTPException(status_code=404, detail="Step not found")
    return StepRead.model_validate(step)


@router.patch("/{step_id}", response_model=StepRead)
async def update_step(
    step_id: str,
    body: StepUpdate,
    user: CurrentUser,
    db: DatabaseDep,
    engine: EngineDep,
    scheduler: OptionalScheduler,
) -> StepRead:
    """Update a step's fields and, optionally, its status.

    A status change is recorded in the step history with the acting user
    and propagates to the plan and to dependent steps.

    Raises:
        HTTPException: If the step is not found.
        SchedulingConfigError: If the scheduling fields are invalid (400).
    """
    updates = body.model_dump(exclude_unset=True)
    status = updates.pop("status", None)
    notes = updates.pop("notes", None)
    rescheduled = bool(SCHEDULING_FIELDS & updates.keys())

    with db.session_scope() as session:
        repo = ReleaseStepRepository(session)
        step = repo.get_by_id(step_id)
        if step is None:
            raise HTTPException(status_code=404, detail="Step not found")

        previous_status = step.status
        previous_lead = step.team_lead_id
        for field, value in updates.items():
            if value is None and field in _REQUIRED_FIELDS:
                continue
            setattr(step, field, value)

        if rescheduled:
            _store_wall_time(step)
            validate_scheduling(step, repo.get_by_plan(step.release_plan_id))
        repo.update(step)

    if status is not None and status != previous_status:
        step = await engine.change_step_status(step_id, status, actor=user.id, notes=notes)
    else:
        await engine.publish("step_updated", StepRead.model_validate(step))

    if rescheduled and scheduler is not None:
        scheduler.schedule_step(step)
    if step.team_lead_id and step.team_lead_id != previous_lead:
        engine.notify_assignment(step, step.team_lead_id, "team_lead")

    return StepRead.model_validate(step)


@router.delete("/{step_id}", status_code=204)
async def delete_step(
    step_id: str,
    user: CurrentUser,
    db: DatabaseDep,
    engine: EngineDep,
    scheduler: OptionalScheduler,
) -> Response:
    """Delete a step and its history.

    Steps referencing it lose that reference.

    Raises:
        HTTPException: If the step is not found.
    """
    with db.session_scope() as session:
        repo = ReleaseStepRepository(session)
        step = repo.get_by_id(step_id)
        if step is None:
            raise HTTPException(status_code=404, detail="Step not found")
        plan_id = step.release_plan_id
        repo.delete(step_id)

    if scheduler is not None:
        scheduler.unschedule_step(step_id)

    logger.info(f"Step {step_id} deleted by {user.id}")
    await engine.publish("step_deleted", {"id": step_id})
    await engine.refresh_plan_status(plan_id)
    return Response(status_code=204)


@router.post("/{step_id}/trigger", response_model=StepRead)
async def trigger_step(
    step_id: str,
    user: CurrentUser,
    engine: EngineDep,
    body: TriggerRequest | None = None,
) -> StepRead:
    """Manually start a step.

    Only release managers and team leads may trigger steps.

    Raises:
        HTTPException: 403 for other roles.
        StepNotFoundError: If the step is not found (404).
        StepNotTriggerableError: If the step already left not_started (409).
    """
    require_role(user, UserRole.RELEASE_MANAGER, UserRole.TEAM_LEAD)

    notes = body.notes if body and body.notes else "Manually triggered"
    step = await engine.trigger_step(step_id, actor=user.id, notes=notes, strict=True)
    if step is None:
        raise HTTPException(status_code=409, detail="Step cannot be triggered")
    return StepRead.model_validate(step)


@router.get("/{step_id}/history", response_model=list[HistoryRead])
async def get_step_history(step_id: str, store: StoreDep) -> list[HistoryRead]:
    """Get the status history of a step, newest first.

    Raises:
        HTTPException: If the step is not found.
    """
    if await store.get_step(step_id) is None:
        raise HTTPException(status_code=404, detail="Step not found")
    return [HistoryRead.model_validate(entry) for entry in await store.list_history(step_id)]
