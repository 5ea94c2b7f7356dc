"""Global setting API schemas for ReleasePilot."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SettingUpdate(BaseModel):
    """Schema for creating or updating a global setting."""

    key: str = Field(..., min_length=1, max_length=100, description="Setting key")
    value: str | None = Field(default=None, description="Setting value")
    description: str | None = Field(default=None, description="Setting description")
