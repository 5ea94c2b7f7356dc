"""ReleasePilot scheduling engine and its APScheduler driver."""

from .engine import KeyedLocks, SchedulingEngine
from .report import TickError, TickReport
from .service import SchedulerService, step_job_id
from .triggers import (
    derive_plan_status,
    is_dependency_satisfied,
    is_fixed_time_due,
    resolve_timezone,
    scheduled_at_utc,
    to_utc,
    to_wall_time,
)
from .validation import validate_scheduling

__all__ = [
    "KeyedLocks",
    "SchedulerService",
    "SchedulingEngine",
    "TickError",
    "TickReport",
    "derive_plan_status",
    "is_dependency_satisfied",
    "is_fixed_time_due",
    "resolve_timezone",
    "scheduled_at_utc",
    "step_job_id",
    "to_utc",
    "to_wall_time",
    "validate_scheduling",
]
