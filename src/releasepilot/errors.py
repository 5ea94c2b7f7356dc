"""Error classification for ReleasePilot."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Classification of errors for handling decisions."""

    PRECONDITION = "precondition"  # Skip: state already moved on
    VALIDATION = "validation"  # Reject upstream, never reaches the scheduler
    PERMANENT = "permanent"  # Don't retry: not found
    TRANSIENT = "transient"  # Log, next tick retries
    CONFIGURATION = "configuration"  # Startup problem


@dataclass
class ReleasePilotError(Exception):
    """Base error with classification and context."""

    message: str
    category: ErrorCategory
    step_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.message}"

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass
class StepNotFoundError(ReleasePilotError):
    """Raised when a step id does not resolve to a step."""

    def __init__(self, step_id: str) -> None:
        super().__init__(
            message=f"Step not found: {step_id}",
            category=ErrorCategory.PERMANENT,
            step_id=step_id,
        )


@dataclass
class PlanNotFoundError(ReleasePilotError):
    """Raised when a plan id does not resolve to a release plan."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(
            message=f"Release plan not found: {plan_id}",
            category=ErrorCategory.PERMANENT,
            context={"plan_id": plan_id},
        )


@dataclass
class StepNotTriggerableError(ReleasePilotError):
    """Raised when a trigger is requested for a step that already left not_started."""

    def __init__(self, step_id: str, status: str) -> None:
        super().__init__(
            message=f"Step {step_id} cannot be triggered from status '{status}'",
            category=ErrorCategory.PRECONDITION,
            step_id=step_id,
            context={"status": status},
        )


@dataclass
class SchedulingConfigError(ReleasePilotError):
    """Invalid scheduling configuration for a step."""

    def __init__(self, message: str, step_id: str | None = None) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            step_id=step_id,
        )


@dataclass
class NotificationError(ReleasePilotError):
    """A notification could not be delivered."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, category=ErrorCategory.TRANSIENT)


@dataclass
class ConfigError(ReleasePilotError):
    """Error loading or accessing configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, category=ErrorCategory.CONFIGURATION)
