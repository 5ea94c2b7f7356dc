"""Repository classes for ReleasePilot storage operations."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select, update

from .models import (
    GlobalSetting,
    PlanStatus,
    ReleasePlan,
    ReleaseStep,
    SchedulingType,
    StepHistory,
    StepStatus,
    User,
    UserRole,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.orm import Session


class UserRepository:
    """Repository for User records."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self._session = session

    def create(self, user: User) -> User:
        """Create a new user record."""
        self._session.add(user)
        self._session.flush()
        return user

    def get_by_id(self, user_id: str) -> User | None:
        """Get a user by id."""
        return self._session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        """Get a user by email address."""
        return self._session.scalar(select(User).where(User.email == email))

    def get_by_ids(self, user_ids: Iterable[str]) -> list[User]:
        """Get all users whose id is in ``user_ids``.

        Args:
            user_ids: User ids to resolve. Unknown ids are ignored.

        Returns:
            Matching users, in no particular order.
        """
        ids = list(user_ids)
        if not ids:
            return []
        return list(self._session.scalars(select(User).where(User.id.in_(ids))))

    def get_by_role(self, role: UserRole) -> list[User]:
        """Get users holding a role."""
        stmt = select(User).where(User.role == role).order_by(User.email)
        return list(self._session.scalars(stmt))

    def get_all(self) -> list[User]:
        """Get all users ordered by email."""
        return list(self._session.scalars(select(User).order_by(User.email)))


class ReleasePlanRepository:
    """Repository for ReleasePlan records."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self._session = session

    def create(self, plan: ReleasePlan) -> ReleasePlan:
        """Create a new release plan."""
        self._session.add(plan)
        self._session.flush()
        return plan

    def update(self, plan: ReleasePlan) -> ReleasePlan:
        """Flush changes made to an attached plan."""
        self._session.flush()
        return plan

    def get_by_id(self, plan_id: str) -> ReleasePlan | None:
        """Get a release plan by id."""
        return self._session.get(ReleasePlan, plan_id)

    def get_all(self) -> list[ReleasePlan]:
        """Get all plans, newest first."""
        stmt = select(ReleasePlan).order_by(ReleasePlan.created_at.desc())
        return list(self._session.scalars(stmt))

    def get_active(self) -> ReleasePlan | None:
        """Get the plan currently being executed.

        Returns the newest active plan, falling back to the newest plan
        still in planning.
        """
        for status in (PlanStatus.ACTIVE, PlanStatus.PLANNING):
            stmt = (
                select(ReleasePlan)
                .where(ReleasePlan.status == status)
                .order_by(ReleasePlan.created_at.desc())
                .limit(1)
            )
            plan = self._session.scalar(stmt)
            if plan is not None:
                return plan
        return None

    def set_status(
        self,
        plan_id: str,
        status: PlanStatus,
        *,
        exclude: Iterable[PlanStatus] = (),
    ) -> bool:
        """Conditionally write a plan status.

        The write only happens when the current status differs from
        ``status`` and is not one of ``exclude``.

        Args:
            plan_id: The plan to update.
            status: The new status.
            exclude: Current statuses that must not be overwritten.

        Returns:
            True if a row was updated.
        """
        blocked = {status, *exclude}
        stmt = (
            update(ReleasePlan)
            .where(ReleasePlan.id == plan_id, ReleasePlan.status.not_in(blocked))
            .values(status=status, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        return result.rowcount == 1

    def delete(self, plan_id: str) -> bool:
        """Delete a plan and, by cascade, its steps and their history.

        Returns:
            True if deleted, False if not found.
        """
        plan = self.get_by_id(plan_id)
        if plan is None:
            return False

        self._session.delete(plan)
        self._session.flush()
        return True


class ReleaseStepRepository:
    """Repository for ReleaseStep records."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self._session = session

    def create(self, step: ReleaseStep) -> ReleaseStep:
        """Create a new step."""
        self._session.add(step)
        self._session.flush()
        return step

    def update(self, step: ReleaseStep) -> ReleaseStep:
        """Flush changes made to an attached step."""
        self._session.flush()
        return step

    def get_by_id(self, step_id: str) -> ReleaseStep | None:
        """Get a step by id."""
        return self._session.get(ReleaseStep, step_id)

    def get_by_plan(self, plan_id: str) -> list[ReleaseStep]:
        """Get all steps of a plan in display order."""
        stmt = (
            select(ReleaseStep)
            .where(ReleaseStep.release_plan_id == plan_id)
            .order_by(ReleaseStep.order, ReleaseStep.created_at)
        )
        return list(self._session.scalars(stmt))

    def get_by_status(self, status: StepStatus) -> list[ReleaseStep]:
        """Get all steps with a status, across plans."""
        stmt = (
            select(ReleaseStep)
            .where(ReleaseStep.status == status)
            .order_by(ReleaseStep.release_plan_id, ReleaseStep.order)
        )
        return list(self._session.scalars(stmt))

    def get_pending_fixed_time(self) -> list[ReleaseStep]:
        """Get fixed-time steps that have not started yet.

        Steps missing a scheduled time are left out.
        """
        stmt = (
            select(ReleaseStep)
            .where(
                ReleaseStep.scheduling_type == SchedulingType.FIXED_TIME,
                ReleaseStep.status == StepStatus.NOT_STARTED,
                ReleaseStep.scheduled_time.is_not(None),
            )
            .order_by(ReleaseStep.scheduled_time, ReleaseStep.order)
        )
        return list(self._session.scalars(stmt))

    def mark_started(self, step_id: str, started_at: datetime) -> bool:
        """Move a step from not_started to started.

        This is a compare-and-swap: the row is only updated while it is
        still not_started.

        Returns:
            True if this call performed the transition.
        """
        stmt = (
            update(ReleaseStep)
            .where(ReleaseStep.id == step_id, ReleaseStep.status == StepStatus.NOT_STARTED)
            .values(status=StepStatus.STARTED, started_at=started_at, updated_at=started_at)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        return result.rowcount == 1

    def delete(self, step_id: str) -> bool:
        """Delete a step and its history.

        References from sibling steps are cleared first.

        Returns:
            True if deleted, False if not found.
        """
        step = self.get_by_id(step_id)
        if step is None:
            return False

        self._session.execute(
            update(ReleaseStep)
            .where(ReleaseStep.depends_on_step_id == step_id)
            .values(depends_on_step_id=None)
            .execution_options(synchronize_session=False)
        )
        self._session.execute(
            update(ReleaseStep)
            .where(ReleaseStep.simultaneous_with_step_id == step_id)
            .values(simultaneous_with_step_id=None)
            .execution_options(synchronize_session=False)
        )
        self._session.delete(step)
        self._session.flush()
        return True

    def get_referencing(self, step_id: str) -> list[ReleaseStep]:
        """Get steps that depend on or run simultaneously with ``step_id``."""
        stmt = select(ReleaseStep).where(
            or_(
                ReleaseStep.depends_on_step_id == step_id,
                ReleaseStep.simultaneous_with_step_id == step_id,
            )
        )
        return list(self._session.scalars(stmt))


class StepHistoryRepository:
    """Repository for StepHistory records. Rows are append-only."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self._session = session

    def create(self, entry: StepHistory) -> StepHistory:
        """Append a history row."""
        self._session.add(entry)
        self._session.flush()
        return entry

    def get_by_step(self, step_id: str) -> list[StepHistory]:
        """Get the history of a step, newest first."""
        stmt = (
            select(StepHistory)
            .where(StepHistory.step_id == step_id)
            .order_by(StepHistory.created_at.desc())
        )
        return list(self._session.scalars(stmt))

    def count_by_step(self, step_id: str) -> int:
        """Count history rows for a step."""
        stmt = select(func.count()).select_from(StepHistory).where(StepHistory.step_id == step_id)
        return int(self._session.scalar(stmt) or 0)


class GlobalSettingRepository:
    """Repository for GlobalSetting records."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self._session = session

    def get_all(self) -> list[GlobalSetting]:
        """Get all settings ordered by key."""
        return list(self._session.scalars(select(GlobalSetting).order_by(GlobalSetting.key)))

    def get(self, key: str) -> GlobalSetting | None:
        """Get a setting by key."""
        return self._session.scalar(select(GlobalSetting).where(GlobalSetting.key == key))

    def upsert(
        self,
        key: str,
        value: str | None,
        description: str | None = None,
        updated_by: str | None = None,
    ) -> GlobalSetting:
        """Create or update a setting.

        Args:
            key: Setting key.
            value: New value.
            description: Optional human description. Kept if not given.
            updated_by: Id of the user making the change.

        Returns:
            The stored setting.
        """
        setting = self.get(key)
        if setting is None:
            setting = GlobalSetting(
                key=key,
                value=value,
                description=description,
                updated_by=updated_by,
            )
            self._session.add(setting)
        else:
            setting.value = value
            if description is not None:
                setting.description = description
            setting.updated_by = updated_by
            setting.updated_at = datetime.now(UTC)
        self._session.flush()
        return setting

    def delete(self, key: str) -> bool:
        """Delete a setting by key.

        Returns:
            True if deleted, False if not found.
        """
        setting = self.get(key)
        if setting is None:
            return False

        self._session.delete(setting)
        self._session.flush()
        return True
