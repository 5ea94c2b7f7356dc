"""Common API schemas for ReleasePilot."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(..., description="Error message")
    errors: list[dict[str, Any]] | None = Field(
        default=None, description="Detailed validation errors"
    )


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str = Field(..., description="Response message")
