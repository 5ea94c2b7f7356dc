"""Release plan API schemas for ReleasePilot."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from releasepilot.storage.models import PlanStatus


class PlanCreate(BaseModel):
    """Schema for creating a release plan."""

    name: str = Field(..., min_length=1, max_length=255, description="Release name")
    version: str = Field(..., min_length=1, max_length=50, description="Release version")
    description: str | None = Field(default=None, description="Release description")
    scheduled_date: datetime | None = Field(default=None, description="Planned release date")
    timezone: str = Field(default="UTC", description="Timezone of the release")


class PlanUpdate(BaseModel):
    """Schema for updating a release plan. Only given fields change."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    version: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = None
    scheduled_date: datetime | None = None
    timezone: str | None = None
    status: PlanStatus | None = Field(
        default=None, description="Manual status override, e.g. cancelled"
    )
