"""Release plan API routes for ReleasePilot."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Response

from releasepilot.api.dependencies import (
    CurrentUser,
    DatabaseDep,
    EngineDep,
    OptionalScheduler,
    StoreDep,
)
from releasepilot.api.schemas import PlanCreate, PlanDetail, PlanRead, PlanUpdate, StepRead
from releasepilot.storage import (
    ReleasePlan,
    ReleasePlanRepository,
    ReleaseStep,
    ReleaseStepRepository,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/release-plans")

# Columns that cannot be cleared through PATCH
_REQUIRED_FIELDS = frozenset({"name", "version", "timezone", "status"})


def _plan_detail(plan: ReleasePlan, steps: list[ReleaseStep]) -> PlanDetail:
    return PlanDetail(
        **PlanRead.model_validate(plan).model_dump(),
        steps=[StepRead.model_validate(step) for step in steps],
    )


@router.get("", response_model=list[PlanRead])
async def list_plans(db: DatabaseDep) -> list[PlanRead]:
    """List all release plans, newest first."""
    with db.session_scope() as session:
        plans = ReleasePlanRepository(session).get_all()
        return [PlanRead.model_validate(plan) for plan in plans]


@router.get("/active", response_model=PlanDetail | None)
async def get_active_plan(db: DatabaseDep) -> PlanDetail | None:
    """Get the plan currently being executed, with its steps.

    Returns the newest active plan, else the newest plan still in planning,
    else null.
    """
    with db.session_scope() as session:
        plan = ReleasePlanRepository(session).get_active()
        if plan is None:
            return None
        return _plan_detail(plan, ReleaseStepRepository(session).get_by_plan(plan.id))


@router.get("/{plan_id}", response_model=PlanDetail)
async def get_plan(plan_id: str, db: DatabaseDep) -> PlanDetail:
    """Get a release plan with its steps.

    Raises:
        HTTPException: If the plan is not found.
    """
    with db.session_scope() as session:
        plan = ReleasePlanRepository(session).get_by_id(plan_id)
        if plan is None:
            raise HTTPException(status_code=404, detail="Release plan not found")
        return _plan_detail(plan, ReleaseStepRepository(session).get_by_plan(plan_id))


@router.post("", response_model=PlanRead, status_code=201)
async def create_plan(
    body: PlanCreate,
    user: CurrentUser,
    db: DatabaseDep,
    engine: EngineDep,
) -> PlanRead:
    """Create a release plan owned by the acting user."""
    with db.session_scope() as session:
        plan = ReleasePlanRepository(session).create(
            ReleasePlan(**body.model_dump(), created_by=user.id)
        )
        result = PlanRead.model_validate(plan)

    logger.info(f"Release plan '{result.name}' {result.version} created by {user.id}")
    await engine.publish("release_plan_created", result)
    return result


@router.patch("/{plan_id}", response_model=PlanRead)
async def update_plan(
    plan_id: str,
    body: PlanUpdate,
    user: CurrentUser,
    db: DatabaseDep,
    engine: EngineDep,
) -> PlanRead:
    """Update a release plan.

    Setting ``status`` is a manual override; ``cancelled`` stops automatic
    status derivation for the plan.

    Raises:
        HTTPException: If the plan is not found.
    """
    with db.session_scope() as session:
        repo = ReleasePlanRepository(session)
        plan = repo.get_by_id(plan_id)
        if plan is None:
            raise HTTPException(status_code=404, detail="Release plan not found")

        for field, value in body.model_dump(exclude_unset=True).items():
            if value is None and field in _REQUIRED_FIELDS:
                continue
            setattr(plan, field, value)
        repo.update(plan)
        result = PlanRead.model_validate(plan)

    logger.info(f"Release plan {plan_id} updated by {user.id}")
    await engine.publish("release_plan_updated", result)
    return result


@router.delete("/{plan_id}", status_code=204)
async def delete_plan(
    plan_id: str,
    user: CurrentUser,
    db: DatabaseDep,
    engine: EngineDep,
    scheduler: OptionalScheduler,
) -> Response:
    """Delete a release plan with its steps and their history.

    Raises:
        HTTPException: If the plan is not found.
    """
    with db.session_scope() as session:
        step_ids = [step.id for step in ReleaseStepRepository(session).get_by_plan(plan_id)]
        if not ReleasePlanRepository(session).delete(plan_id):
            raise HTTPException(status_code=404, detail="Release plan not found")

    if scheduler is not None:
        for step_id in step_ids:
            scheduler.unschedule_step(step_id)

    logger.info(f"Release plan {plan_id} deleted by {user.id}")
    await engine.publish("release_plan_deleted", {"id": plan_id})
    return Response(status_code=204)


@router.get("/{plan_id}/steps", response_model=list[StepRead])
async def list_plan_steps(plan_id: str, store: StoreDep) -> list[StepRead]:
    """List the steps of a plan in display order.

    Raises:
        HTTPException: If the plan is not found.
    """
    if await store.get_plan(plan_id) is None:
        raise HTTPException(status_code=404, detail="Release plan not found")
    return [StepRead.model_validate(step) for step in await store.list_steps_by_plan(plan_id)]
