"""Async persistence gateway used by the scheduling engine.

Every method opens its own transactional scope, so callers always see
committed state and never hold a session across an ``await``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .models import PlanStatus, ReleasePlan, ReleaseStep, StepHistory, StepStatus, User
from .repositories import (
    GlobalSettingRepository,
    ReleasePlanRepository,
    ReleaseStepRepository,
    StepHistoryRepository,
    UserRepository,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .database import Database


class ReleaseStore:
    """Persistence operations consumed by the scheduler."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def db(self) -> Database:
        """The underlying database."""
        return self._db

    # Steps

    async def get_step(self, step_id: str) -> ReleaseStep | None:
        with self._db.session_scope() as session:
            return ReleaseStepRepository(session).get_by_id(step_id)

    async def list_steps_by_status(self, status: StepStatus) -> list[ReleaseStep]:
        with self._db.session_scope() as session:
            return ReleaseStepRepository(session).get_by_status(status)

    async def list_pending_fixed_time_steps(self) -> list[ReleaseStep]:
        with self._db.session_scope() as session:
            return ReleaseStepRepository(session).get_pending_fixed_time()

    async def list_steps_by_plan(self, plan_id: str) -> list[ReleaseStep]:
        with self._db.session_scope() as session:
            return ReleaseStepRepository(session).get_by_plan(plan_id)

    async def mark_step_started(
        self,
        step_id: str,
        *,
        actor: str,
        notes: str | None,
        at: datetime | None = None,
    ) -> ReleaseStep | None:
        """Start a step and record the history row in one transaction.

        Returns:
            The updated step, or None if the step was no longer not_started.
        """
        started_at = at or datetime.now(UTC)
        with self._db.session_scope() as session:
            steps = ReleaseStepRepository(session)
            if not steps.mark_started(step_id, started_at):
                return None
            StepHistoryRepository(session).create(
                StepHistory(
                    step_id=step_id,
                    previous_status=StepStatus.NOT_STARTED,
                    new_status=StepStatus.STARTED,
                    changed_by=actor,
                    notes=notes,
                    created_at=started_at,
                )
            )
            return steps.get_by_id(step_id)

    async def set_step_status(
        self,
        step_id: str,
        status: StepStatus,
        *,
        actor: str,
        notes: str | None = None,
        at: datetime | None = None,
    ) -> tuple[ReleaseStep, StepStatus] | None:
        """Apply a human-driven status change with its history row.

        Stamps ``started_at``/``completed_at`` when they are still empty.

        Returns:
            ``(step, previous_status)``, or None if the step does not exist.
        """
        changed_at = at or datetime.now(UTC)
        with self._db.session_scope() as session:
            steps = ReleaseStepRepository(session)
            step = steps.get_by_id(step_id)
            if step is None:
                return None

            previous = step.status
            if previous == status:
                return step, previous

            step.status = status
            if status in (StepStatus.STARTED, StepStatus.IN_PROGRESS) and step.started_at is None:
                step.started_at = changed_at
            elif status == StepStatus.COMPLETED and step.completed_at is None:
                step.completed_at = changed_at
            steps.update(step)

            StepHistoryRepository(session).create(
                StepHistory(
                    step_id=step_id,
                    previous_status=previous,
                    new_status=status,
                    changed_by=actor,
                    notes=notes,
                    created_at=changed_at,
                )
            )
            # Reload so timestamps read back the way they are stored
            session.refresh(step)
            return step, previous

    # History

    async def add_history(
        self,
        step_id: str,
        previous_status: StepStatus | None,
        new_status: StepStatus,
        *,
        actor: str,
        notes: str | None = None,
    ) -> StepHistory:
        with self._db.session_scope() as session:
            return StepHistoryRepository(session).create(
                StepHistory(
                    step_id=step_id,
                    previous_status=previous_status,
                    new_status=new_status,
                    changed_by=actor,
                    notes=notes,
                )
            )

    async def list_history(self, step_id: str) -> list[StepHistory]:
        with self._db.session_scope() as session:
            return StepHistoryRepository(session).get_by_step(step_id)

    # Plans

    async def get_plan(self, plan_id: str) -> ReleasePlan | None:
        with self._db.session_scope() as session:
            return ReleasePlanRepository(session).get_by_id(plan_id)

    async def set_plan_status(
        self,
        plan_id: str,
        status: PlanStatus,
        *,
        exclude: Iterable[PlanStatus] = (),
    ) -> bool:
        with self._db.session_scope() as session:
            return ReleasePlanRepository(session).set_status(plan_id, status, exclude=exclude)

    async def mark_plan_completed(self, plan_id: str) -> ReleasePlan | None:
        """Move a plan to completed unless it already is completed or cancelled.

        Returns:
            The updated plan, or None if another caller completed it first.
        """
        with self._db.session_scope() as session:
            plans = ReleasePlanRepository(session)
            if not plans.set_status(
                plan_id, PlanStatus.COMPLETED, exclude=(PlanStatus.CANCELLED,)
            ):
                return None
            return plans.get_by_id(plan_id)

    # Users and settings

    async def get_user(self, user_id: str) -> User | None:
        with self._db.session_scope() as session:
            return UserRepository(session).get_by_id(user_id)

    async def get_users_by_ids(self, user_ids: Iterable[str]) -> list[User]:
        with self._db.session_scope() as session:
            return UserRepository(session).get_by_ids(user_ids)

    async def get_setting(self, key: str) -> str | None:
        with self._db.session_scope() as session:
            setting = GlobalSettingRepository(session).get(key)
            return setting.value if setting else None
