"""Read models shared by the API responses and real-time events."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from releasepilot.storage.models import (
    PlanStatus,
    SchedulingType,
    StepCategory,
    StepStatus,
    UserRole,
)


class UserRead(BaseModel):
    """A user as exposed to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="User ID")
    email: str | None = Field(default=None, description="Email address")
    first_name: str | None = Field(default=None, description="First name")
    last_name: str | None = Field(default=None, description="Last name")
    role: UserRole = Field(..., description="Role in the release process")


class StepRead(BaseModel):
    """A release step."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Step ID")
    release_plan_id: str = Field(..., description="Owning release plan")
    name: str = Field(..., description="Step name")
    description: str | None = Field(default=None, description="Step description")
    category: StepCategory = Field(..., description="Release phase")
    status: StepStatus = Field(..., description="Current status")
    order: int = Field(default=0, description="Display order within the plan")
    team_lead_id: str | None = Field(default=None, description="Team lead user ID")
    primary_poc_id: str | None = Field(default=None, description="Primary POC user ID")
    backup_poc_id: str | None = Field(default=None, description="Backup POC user ID")
    scheduling_type: SchedulingType = Field(..., description="How the step gets started")
    scheduled_time: datetime | None = Field(default=None, description="Fixed start time")
    timezone: str = Field(default="UTC", description="Timezone of scheduled_time")
    depends_on_step_id: str | None = Field(default=None, description="Step that must complete first")
    simultaneous_with_step_id: str | None = Field(
        default=None, description="Step this one starts together with"
    )
    started_at: datetime | None = Field(default=None, description="Start timestamp")
    completed_at: datetime | None = Field(default=None, description="Completion timestamp")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")


class PlanRead(BaseModel):
    """A release plan without its steps."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Release plan ID")
    name: str = Field(..., description="Release name")
    version: str = Field(..., description="Release version")
    description: str | None = Field(default=None, description="Release description")
    scheduled_date: datetime | None = Field(default=None, description="Planned release date")
    timezone: str = Field(default="UTC", description="Timezone of the release")
    status: PlanStatus = Field(..., description="Current status")
    created_by: str = Field(..., description="Creator user ID")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")


class PlanDetail(PlanRead):
    """A release plan with its steps in display order."""

    steps: list[StepRead] = Field(default_factory=list, description="Steps of the plan")


class HistoryRead(BaseModel):
    """One status transition of a step."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="History entry ID")
    step_id: str = Field(..., description="Step ID")
    previous_status: StepStatus | None = Field(default=None, description="Status before")
    new_status: StepStatus = Field(..., description="Status after")
    changed_by: str = Field(..., description="User ID or 'system'")
    notes: str | None = Field(default=None, description="Why the change happened")
    created_at: datetime | None = Field(default=None, description="When the change happened")


class SettingRead(BaseModel):
    """A global setting."""

    model_config = ConfigDict(from_attributes=True)

    key: str = Field(..., description="Setting key")
    value: str | None = Field(default=None, description="Setting value")
    description: str | None = Field(default=None, description="Setting description")
    updated_by: str | None = Field(default=None, description="Last editor user ID")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")
