"""Release step API schemas for ReleasePilot."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from releasepilot.storage.models import SchedulingType, StepCategory, StepStatus

# Fields of StepUpdate that affect when a step starts
SCHEDULING_FIELDS = frozenset(
    {
        "scheduling_type",
        "scheduled_time",
        "timezone",
        "depends_on_step_id",
        "simultaneous_with_step_id",
    }
)


class StepCreate(BaseModel):
    """Schema for creating a release step."""

    release_plan_id: str = Field(..., description="Owning release plan")
    name: str = Field(..., min_length=1, max_length=255, description="Step name")
    description: str | None = Field(default=None, description="Step description")
    category: StepCategory = Field(..., description="Release phase")
    order: int = Field(default=0, description="Display order within the plan")
    team_lead_id: str | None = None
    primary_poc_id: str | None = None
    backup_poc_id: str | None = None
    scheduling_type: SchedulingType = Field(default=SchedulingType.MANUAL)
    scheduled_time: datetime | None = Field(
        default=None, description="Start time; naive values are read in `timezone`"
    )
    timezone: str = Field(default="UTC", description="IANA timezone name")
    depends_on_step_id: str | None = None
    simultaneous_with_step_id: str | None = None


class StepUpdate(BaseModel):
    """Schema for updating a release step. Only given fields change."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    category: StepCategory | None = None
    order: int | None = None
    team_lead_id: str | None = None
    primary_poc_id: str | None = None
    backup_poc_id: str | None = None
    scheduling_type: SchedulingType | None = None
    scheduled_time: datetime | None = None
    timezone: str | None = None
    depends_on_step_id: str | None = None
    simultaneous_with_step_id: str | None = None
    status: StepStatus | None = Field(default=None, description="New status")
    notes: str | None = Field(default=None, description="Note stored with a status change")


class TriggerRequest(BaseModel):
    """Optional body of a manual trigger."""

    notes: str | None = Field(default=None, description="Note stored with the trigger")
