"""SQLAlchemy database models for ReleasePilot storage layer."""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

# Reserved actor id for history rows written by the scheduler. Never a user id.
SYSTEM_ACTOR = "system"


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class StepStatus(str, enum.Enum):
    """Lifecycle status of a release step."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(str, enum.Enum):
    """Status of a release plan."""

    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StepCategory(str, enum.Enum):
    """Phase of the release a step belongs to."""

    BEFORE_RELEASE = "before_release"
    ACTUAL_RELEASE = "actual_release"
    POST_RELEASE = "post_release"


class SchedulingType(str, enum.Enum):
    """How a step gets started."""

    MANUAL = "manual"
    FIXED_TIME = "fixed_time"
    AFTER_STEP = "after_step"
    SIMULTANEOUS = "simultaneous"


class UserRole(str, enum.Enum):
    """Role of a user in the release process."""

    RELEASE_MANAGER = "release_manager"
    TEAM_LEAD = "team_lead"
    POC = "poc"
    VIEWER = "viewer"


class User(Base):
    """A person who can be assigned to steps."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.VIEWER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    @property
    def display_name(self) -> str:
        """Full name, falling back to email or id."""
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email or self.id

    def __repr__(self) -> str:
        return f"<User(id={self.id!r}, email={self.email!r}, role={self.role})>"


class ReleasePlan(Base):
    """A release, owning an ordered set of steps."""

    __tablename__ = "release_plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")
    status: Mapped[PlanStatus] = mapped_column(Enum(PlanStatus), default=PlanStatus.PLANNING)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    steps: Mapped[list[ReleaseStep]] = relationship(
        "ReleaseStep",
        back_populates="release_plan",
        cascade="all, delete-orphan",
        order_by="ReleaseStep.order",
    )

    def __repr__(self) -> str:
        return f"<ReleasePlan(id={self.id!r}, name={self.name!r}, status={self.status})>"


class ReleaseStep(Base):
    """A single schedulable unit of release work."""

    __tablename__ = "release_steps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    release_plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("release_plans.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[StepCategory] = mapped_column(Enum(StepCategory), nullable=False)
    status: Mapped[StepStatus] = mapped_column(
        Enum(StepStatus), default=StepStatus.NOT_STARTED, index=True
    )
    order: Mapped[int] = mapped_column(Integer, default=0)

    # Assignment
    team_lead_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    primary_poc_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    backup_poc_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Scheduling
    scheduling_type: Mapped[SchedulingType] = mapped_column(
        Enum(SchedulingType), default=SchedulingType.MANUAL
    )
    scheduled_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")
    depends_on_step_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("release_steps.id", ondelete="SET NULL"), nullable=True
    )
    simultaneous_with_step_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("release_steps.id", ondelete="SET NULL"), nullable=True
    )

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    release_plan: Mapped[ReleasePlan] = relationship("ReleasePlan", back_populates="steps")
    history: Mapped[list[StepHistory]] = relationship(
        "StepHistory",
        back_populates="step",
        cascade="all, delete-orphan",
    )

    @property
    def stakeholder_ids(self) -> list[str]:
        """Team lead, primary and backup POC ids, in that order, without blanks."""
        return [
            user_id
            for user_id in (self.team_lead_id, self.primary_poc_id, self.backup_poc_id)
            if user_id
        ]

    def __repr__(self) -> str:
        return f"<ReleaseStep(id={self.id!r}, name={self.name!r}, status={self.status})>"


class StepHistory(Base):
    """Immutable audit record of a step status transition."""

    __tablename__ = "step_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    step_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("release_steps.id", ondelete="CASCADE"), index=True
    )
    previous_status: Mapped[StepStatus | None] = mapped_column(Enum(StepStatus), nullable=True)
    new_status: Mapped[StepStatus] = mapped_column(Enum(StepStatus), nullable=False)
    # User id or SYSTEM_ACTOR, so no foreign key
    changed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    step: Mapped[ReleaseStep] = relationship("ReleaseStep", back_populates="history")

    def __repr__(self) -> str:
        return (
            f"<StepHistory(step_id={self.step_id!r}, "
            f"{self.previous_status} -> {self.new_status}, by={self.changed_by!r})>"
        )


class GlobalSetting(Base):
    """Key/value configuration edited by release managers."""

    __tablename__ = "global_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    def __repr__(self) -> str:
        return f"<GlobalSetting(key={self.key!r}, value={self.value!r})>"
