"""Trigger eligibility rules for release steps."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from releasepilot.storage.models import (
    PlanStatus,
    SchedulingType,
    StepStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from releasepilot.storage.models import ReleaseStep

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = frozenset({StepStatus.STARTED, StepStatus.IN_PROGRESS, StepStatus.COMPLETED})


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to UTC.

    Args:
        name: Timezone name such as ``Europe/Berlin``.

    Returns:
        The zone, or UTC if the name is empty or unknown.
    """
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', treating as UTC")
        return ZoneInfo("UTC")


def to_utc(value: datetime, timezone: str | None = None) -> datetime:
    """Normalize a stored timestamp to an aware UTC datetime.

    Naive values are interpreted in ``timezone`` (UTC when unset).

    Args:
        value: The timestamp as read from storage.
        timezone: The owning record's timezone name.

    Returns:
        Timezone-aware datetime in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=resolve_timezone(timezone))
    return value.astimezone(UTC)


def to_wall_time(value: datetime, timezone: str | None = None) -> datetime:
    """Convert an aware datetime to naive wall-clock time in ``timezone``.

    Scheduled times are stored naive, in the step's own timezone. Naive
    input is assumed to already be wall-clock time and is returned as is.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(resolve_timezone(timezone)).replace(tzinfo=None)


def scheduled_at_utc(step: ReleaseStep) -> datetime | None:
    """The moment a fixed-time step is due, in UTC."""
    if step.scheduled_time is None:
        return None
    return to_utc(step.scheduled_time, step.timezone)


def is_fixed_time_due(step: ReleaseStep, now: datetime) -> bool:
    """Check whether a fixed-time step should start.

    Steps scheduled in the past are due immediately; a missed moment is
    never skipped.

    Args:
        step: The candidate step.
        now: The current time. Naive values are taken as UTC.

    Returns:
        True if the step is fixed_time, not_started and its moment has come.
    """
    if step.scheduling_type != SchedulingType.FIXED_TIME:
        return False
    if step.status != StepStatus.NOT_STARTED:
        return False

    due = scheduled_at_utc(step)
    if due is None:
        return False
    return due <= to_utc(now)


def is_dependency_satisfied(step: ReleaseStep, reference: ReleaseStep | None) -> bool:
    """Check whether a dependency-scheduled step should start.

    ``after_step`` waits for the referenced step to be completed.
    ``simultaneous`` starts together with the referenced step, that is
    once the reference is started.

    Args:
        step: The candidate step.
        reference: The step it points at, or None if missing.

    Returns:
        True if the step is not_started and its reference allows it to start.
    """
    if step.status != StepStatus.NOT_STARTED or reference is None:
        return False

    if step.scheduling_type == SchedulingType.AFTER_STEP:
        return (
            step.depends_on_step_id == reference.id
            and reference.status == StepStatus.COMPLETED
        )
    if step.scheduling_type == SchedulingType.SIMULTANEOUS:
        return (
            step.simultaneous_with_step_id == reference.id
            and reference.status == StepStatus.STARTED
        )
    return False


def reference_id(step: ReleaseStep) -> str | None:
    """The id of the step this one waits on, if any."""
    if step.scheduling_type == SchedulingType.AFTER_STEP:
        return step.depends_on_step_id
    if step.scheduling_type == SchedulingType.SIMULTANEOUS:
        return step.simultaneous_with_step_id
    return None


def derive_plan_status(statuses: Iterable[StepStatus]) -> PlanStatus:
    """Derive a plan's status from its steps.

    Args:
        statuses: Status of every step in the plan.

    Returns:
        completed when there are steps and all are completed, active when
        any step has started, otherwise planning.
    """
    collected = list(statuses)
    if collected and all(status == StepStatus.COMPLETED for status in collected):
        return PlanStatus.COMPLETED
    if any(status in _ACTIVE_STATUSES for status in collected):
        return PlanStatus.ACTIVE
    return PlanStatus.PLANNING
