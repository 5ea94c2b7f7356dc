"""Validation of step scheduling configuration.

The scheduler never raises on malformed rows, it just never selects them.
These checks run upstream, when a step is created or edited.
"""

from __future__ import annotations

from graphlib import CycleError, TopologicalSorter
from typing import TYPE_CHECKING

from releasepilot.errors import SchedulingConfigError
from releasepilot.storage.models import SchedulingType

from .triggers import reference_id, resolve_timezone

if TYPE_CHECKING:
    from collections.abc import Iterable

    from releasepilot.storage.models import ReleaseStep


def validate_scheduling(step: ReleaseStep, siblings: Iterable[ReleaseStep]) -> None:
    """Validate a step's scheduling fields against the rest of its plan.

    Args:
        step: The new or edited step (may not be persisted yet).
        siblings: The other steps of the same plan.

    Raises:
        SchedulingConfigError: If a required field is missing, a reference
            points outside the plan or at the step itself, or references
            form a cycle.
    """
    others = {s.id: s for s in siblings if s.id != step.id}
    kind = step.scheduling_type

    if kind == SchedulingType.FIXED_TIME:
        if step.scheduled_time is None:
            raise SchedulingConfigError("fixed_time steps require scheduled_time", step.id)
        resolve_timezone(step.timezone)
    elif kind == SchedulingType.AFTER_STEP:
        if not step.depends_on_step_id:
            raise SchedulingConfigError("after_step steps require depends_on_step_id", step.id)
    elif kind == SchedulingType.SIMULTANEOUS and not step.simultaneous_with_step_id:
        raise SchedulingConfigError(
            "simultaneous steps require simultaneous_with_step_id", step.id
        )

    target = reference_id(step)
    if target is None:
        return
    if step.id is not None and target == step.id:
        raise SchedulingConfigError("A step cannot reference itself", step.id)
    if target not in others:
        raise SchedulingConfigError(
            f"Referenced step {target} is not part of this release plan", step.id
        )

    _check_cycles(step, others)


def _check_cycles(step: ReleaseStep, others: dict[str, ReleaseStep]) -> None:
    graph: dict[str, set[str]] = {}
    for candidate in [*others.values(), step]:
        node = candidate.id or "<new>"
        target = reference_id(candidate)
        graph[node] = {target} if target else set()

    try:
        tuple(TopologicalSorter(graph).static_order())
    except CycleError as e:
        cycle = " -> ".join(str(node) for node in e.args[1])
        raise SchedulingConfigError(f"Circular step reference: {cycle}", step.id) from e
