"""Step scheduling and dependency-propagation engine.

The engine owns every automatic step transition:

* fixed-time steps start once their scheduled moment has passed,
* ``after_step`` steps start once the step they depend on is completed,
* ``simultaneous`` steps start as soon as their partner step is started,
  cascading within the same pass,
* plans follow their steps' statuses and complete when every step has.

All persistence goes through :class:`~releasepilot.storage.ReleaseStore`.
Notifications run as bounded background tasks so a slow mail server never
delays trigger evaluation for other steps.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel

from releasepilot.errors import StepNotFoundError, StepNotTriggerableError
from releasepilot.schemas import PlanRead, StepRead
from releasepilot.storage.models import (
    SYSTEM_ACTOR,
    PlanStatus,
    StepStatus,
)

from .report import TickReport
from .triggers import derive_plan_status, is_dependency_satisfied, is_fixed_time_due, reference_id

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from releasepilot.notifications import Notifier
    from releasepilot.storage import ReleaseStore
    from releasepilot.storage.models import ReleasePlan, ReleaseStep

logger = logging.getLogger(__name__)

Broadcast = Callable[[dict[str, Any]], Awaitable[None]]


class StepTimers(Protocol):
    """Registry of one-shot timers the engine cancels after a trigger."""

    def unschedule_step(self, step_id: str) -> bool: ...


class KeyedLocks:
    """One asyncio.Lock per key, created on demand.

    A key's lock is dropped once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SchedulingEngine:
    """Evaluates and performs automatic step transitions."""

    def __init__(
        self,
        store: ReleaseStore,
        notifier: Notifier | None = None,
        broadcast: Broadcast | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        notification_concurrency: int = 10,
        publish_timeout: float = 10.0,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Persistence gateway.
            notifier: Notification gateway. None disables notifications.
            broadcast: Coroutine pushing ``{type, data}`` events to observers.
            clock: Returns the current time. Tests pass a fixed clock.
            notification_concurrency: Maximum notifications sent at once.
            publish_timeout: Seconds a broadcast may take before it is abandoned.
        """
        self._store = store
        self._notifier = notifier
        self._broadcast_fn = broadcast
        self._clock = clock or _utcnow
        self._timers: StepTimers | None = None

        self._step_locks = KeyedLocks()
        self._plan_locks = KeyedLocks()
        self._notify_slots = asyncio.Semaphore(notification_concurrency)
        self._publish_timeout = publish_timeout
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def store(self) -> ReleaseStore:
        """The persistence gateway."""
        return self._store

    @property
    def notifier(self) -> Notifier | None:
        """The notification gateway, if notifications are enabled."""
        return self._notifier

    def now(self) -> datetime:
        """Current time according to the engine clock."""
        return self._clock()

    def set_timer_registry(self, timers: StepTimers | None) -> None:
        """Attach the registry whose timers are cancelled once a step starts."""
        self._timers = timers

    def set_broadcast(self, broadcast: Broadcast | None) -> None:
        """Replace the real-time broadcast callback."""
        self._broadcast_fn = broadcast

    # ------------------------------------------------------------------
    # Poll tick
    # ------------------------------------------------------------------

    async def run_tick(self) -> TickReport:
        """Run one poll: fixed-time steps first, then dependency-based steps.

        Never raises. Failures are logged and recorded on the report; the
        affected steps are retried on the next tick.

        Returns:
            Report of what this tick evaluated and triggered.
        """
        report = TickReport(started_at=self._clock())

        for phase, evaluate in (
            ("fixed_time", self.evaluate_fixed_time_steps),
            ("dependencies", self.evaluate_dependent_steps),
        ):
            try:
                await evaluate(report)
            except Exception as e:
                logger.exception(f"Scheduler phase '{phase}' failed: {e}")
                report.add_error(phase, e)

        report.finish()
        if report.triggered:
            logger.info(f"Tick triggered {len(report.triggered)} step(s)")
        return report

    async def evaluate_fixed_time_steps(self, report: TickReport | None = None) -> list[str]:
        """Trigger every fixed-time step whose scheduled moment has passed.

        Returns:
            Ids of the steps started, including cascaded ones.
        """
        report = report if report is not None else TickReport()
        before = len(report.triggered)
        now = self._clock()

        for step in await self._store.list_pending_fixed_time_steps():
            report.evaluated += 1
            if not is_fixed_time_due(step, now):
                continue
            try:
                await self._trigger(
                    step.id,
                    actor=SYSTEM_ACTOR,
                    notes="Automatically triggered by scheduler at scheduled time",
                    report=report,
                )
            except Exception as e:
                logger.exception(f"Error triggering fixed-time step {step.id}: {e}")
                report.add_error("fixed_time", e, step.id)

        return report.triggered[before:]

    async def evaluate_dependent_steps(self, report: TickReport | None = None) -> list[str]:
        """Trigger after_step and simultaneous steps whose reference allows it.

        Returns:
            Ids of the steps started, including cascaded ones.
        """
        report = report if report is not None else TickReport()
        before = len(report.triggered)

        for step in await self._store.list_steps_by_status(StepStatus.NOT_STARTED):
            target = reference_id(step)
            if target is None:
                continue
            report.evaluated += 1
            try:
                reference = await self._store.get_step(target)
                if not is_dependency_satisfied(step, reference):
                    continue
                await self._trigger(
                    step.id,
                    actor=SYSTEM_ACTOR,
                    notes=_dependency_note(step, reference),
                    report=report,
                )
            except Exception as e:
                logger.exception(f"Error evaluating dependent step {step.id}: {e}")
                report.add_error("dependencies", e, step.id)

        return report.triggered[before:]

    # ------------------------------------------------------------------
    # Trigger
    # ------------------------------------------------------------------

    async def trigger_step(
        self,
        step_id: str,
        *,
        actor: str = SYSTEM_ACTOR,
        notes: str | None = None,
        strict: bool = False,
    ) -> ReleaseStep | None:
        """Move a step from not_started to started.

        Safe to call concurrently from the poller, a timer and a manual
        request: exactly one caller performs the transition.

        Args:
            step_id: The step to start.
            actor: User id, or SYSTEM_ACTOR for automatic triggers.
            notes: History note describing where the trigger came from.
            strict: Raise instead of returning None when the step is
                missing or no longer not_started.

        Returns:
            The started step, or None if nothing was done.

        Raises:
            StepNotFoundError: In strict mode, if the step does not exist.
            StepNotTriggerableError: In strict mode, if the step already left not_started.
        """
        if notes is None:
            notes = (
                "Automatically triggered by scheduler"
                if actor == SYSTEM_ACTOR
                else "Manually triggered"
            )
        return await self._trigger(step_id, actor=actor, notes=notes, strict=strict)

    async def _trigger(
        self,
        step_id: str,
        *,
        actor: str,
        notes: str,
        report: TickReport | None = None,
        strict: bool = False,
    ) -> ReleaseStep | None:
        async with self._step_locks.hold(step_id):
            current = await self._store.get_step(step_id)
            if current is None:
                if strict:
                    raise StepNotFoundError(step_id)
                logger.warning(f"Cannot trigger step {step_id}: not found")
                return None
            if current.status != StepStatus.NOT_STARTED:
                if strict:
                    raise StepNotTriggerableError(step_id, current.status.value)
                logger.info(
                    f"Step {current.name} ({step_id}) already {current.status.value}, "
                    "skipping trigger"
                )
                return None

            started = await self._store.mark_step_started(
                step_id, actor=actor, notes=notes, at=self._clock()
            )

        if started is None:
            if strict:
                raise StepNotTriggerableError(step_id, StepStatus.STARTED.value)
            logger.info(f"Step {step_id} was started by another caller, skipping")
            return None

        logger.info(f"Step {started.name} ({started.id}) triggered by {actor}")
        if report is not None:
            report.record_trigger(started.id)

        self._cancel_timer(started.id)
        self.dispatch(self._notify_trigger(started))
        await self.publish("step_triggered", StepRead.model_validate(started))
        await self.refresh_plan_status(started.release_plan_id)
        await self._cascade_simultaneous(started, report)
        return started

    async def _cascade_simultaneous(
        self, started: ReleaseStep, report: TickReport | None
    ) -> None:
        """Start every simultaneous step waiting on ``started``, recursively."""
        try:
            waiting = await self._store.list_steps_by_status(StepStatus.NOT_STARTED)
        except Exception as e:
            logger.exception(f"Error checking simultaneous steps for {started.id}: {e}")
            if report is not None:
                report.add_error("cascade", e, started.id)
            return

        for step in waiting:
            if not is_dependency_satisfied(step, started):
                continue
            try:
                await self._trigger(
                    step.id,
                    actor=SYSTEM_ACTOR,
                    notes=f"Automatically triggered together with step '{started.name}'",
                    report=report,
                )
            except Exception as e:
                logger.exception(f"Error cascading to simultaneous step {step.id}: {e}")
                if report is not None:
                    report.add_error("cascade", e, step.id)

    # ------------------------------------------------------------------
    # Human-driven status changes
    # ------------------------------------------------------------------

    async def change_step_status(
        self,
        step_id: str,
        status: StepStatus,
        *,
        actor: str,
        notes: str | None = None,
    ) -> ReleaseStep:
        """Apply a status edit made by a person and propagate it.

        Args:
            step_id: The step being edited.
            status: The new status.
            actor: Id of the user making the change.
            notes: Optional note stored on the history row.

        Returns:
            The updated step.

        Raises:
            StepNotFoundError: If the step does not exist.
        """
        async with self._step_locks.hold(step_id):
            result = await self._store.set_step_status(
                step_id, status, actor=actor, notes=notes, at=self._clock()
            )
        if result is None:
            raise StepNotFoundError(step_id)

        step, previous = result
        if previous == status:
            return step

        logger.info(f"Step {step.name} ({step.id}) {previous.value} -> {status.value} by {actor}")
        if previous == StepStatus.NOT_STARTED:
            self._cancel_timer(step.id)

        self.dispatch(self._notify_status_change(step, previous, status, actor))
        await self.publish("step_updated", StepRead.model_validate(step))
        await self.on_step_status_change(step.id)
        return step

    async def on_step_status_change(self, step_id: str) -> None:
        """Propagate a step's new status to its plan and to waiting steps.

        Never raises; errors are logged.
        """
        try:
            step = await self._store.get_step(step_id)
            if step is None:
                return

            await self.refresh_plan_status(step.release_plan_id)

            if step.status == StepStatus.STARTED:
                await self._cascade_simultaneous(step, None)
            elif step.status == StepStatus.COMPLETED:
                await self.evaluate_dependent_steps()
                await self.check_release_completion(step.release_plan_id)
        except Exception as e:
            logger.exception(f"Error handling status change of step {step_id}: {e}")

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def refresh_plan_status(self, plan_id: str) -> PlanStatus | None:
        """Re-derive a plan's status from its steps and persist it.

        Cancelled plans are left alone. A plan whose steps are all completed
        goes through :meth:`check_release_completion`.

        Returns:
            The derived status, or None if the plan does not exist.
        """
        plan = await self._store.get_plan(plan_id)
        if plan is None:
            return None

        steps = await self._store.list_steps_by_plan(plan_id)
        derived = derive_plan_status(step.status for step in steps)

        if derived == PlanStatus.COMPLETED:
            await self.check_release_completion(plan_id)
        elif await self._store.set_plan_status(
            plan_id, derived, exclude=(PlanStatus.CANCELLED,)
        ):
            logger.info(f"Release plan {plan.name} ({plan_id}) is now {derived.value}")
            refreshed = await self._store.get_plan(plan_id)
            if refreshed is not None:
                await self.publish("release_plan_updated", PlanRead.model_validate(refreshed))
        return derived

    async def check_release_completion(self, plan_id: str) -> bool:
        """Complete a plan once every one of its steps is completed.

        Idempotent: a plan already completed is left untouched and no
        further notification is requested.

        Returns:
            True if this call completed the plan.
        """
        async with self._plan_locks.hold(plan_id):
            plan = await self._store.get_plan(plan_id)
            if plan is None:
                logger.warning(f"Cannot check completion of plan {plan_id}: not found")
                return False
            if plan.status in (PlanStatus.COMPLETED, PlanStatus.CANCELLED):
                return False

            steps = await self._store.list_steps_by_plan(plan_id)
            if derive_plan_status(step.status for step in steps) != PlanStatus.COMPLETED:
                return False

            completed = await self._store.mark_plan_completed(plan_id)
            if completed is None:
                return False

        logger.info(f"Release {completed.name} {completed.version} completed")
        self.dispatch(self._notify_completion(completed, _stakeholder_ids(steps)))
        await self.publish("release_completed", PlanRead.model_validate(completed))
        return True

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def wait_for_notifications(self) -> None:
        """Wait until every dispatched notification has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_notifications(self) -> int:
        """Number of notifications still in flight."""
        return len(self._pending)

    def dispatch(self, coro: Coroutine[Any, Any, None]) -> None:
        """Run a notification coroutine in the background.

        At most ``notification_concurrency`` notifications run at once.
        The coroutine is discarded when notifications are disabled.
        """
        if self._notifier is None:
            coro.close()
            return
        task = asyncio.create_task(self._run_bounded(coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def notify_assignment(self, step: ReleaseStep, user_id: str, role: str) -> None:
        """Tell a user they were assigned to a step, in the background."""
        self.dispatch(self._notify_assignment(step, user_id, role))

    async def _run_bounded(self, coro: Coroutine[Any, Any, None]) -> None:
        async with self._notify_slots:
            try:
                await coro
            except Exception as e:
                logger.exception(f"Notification failed: {e}")

    def _cancel_timer(self, step_id: str) -> None:
        if self._timers is None:
            return
        try:
            self._timers.unschedule_step(step_id)
        except Exception as e:
            logger.warning(f"Failed to cancel timer for step {step_id}: {e}")

    async def publish(self, event_type: str, payload: BaseModel | dict[str, Any]) -> None:
        """Push a ``{type, data}`` event to real-time observers. Never raises."""
        if self._broadcast_fn is None:
            return
        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
        try:
            await asyncio.wait_for(
                self._broadcast_fn({"type": event_type, "data": data}),
                timeout=self._publish_timeout,
            )
        except TimeoutError:
            logger.warning(f"Broadcast of '{event_type}' timed out after {self._publish_timeout}s")
        except Exception as e:
            logger.warning(f"Broadcast of '{event_type}' failed: {e}")

    async def _emails_for(self, user_ids: Iterable[str]) -> list[str]:
        ordered = list(dict.fromkeys(user_ids))
        users = {user.id: user for user in await self._store.get_users_by_ids(ordered)}
        return [users[uid].email for uid in ordered if uid in users and users[uid].email]

    async def _notify_trigger(self, step: ReleaseStep) -> None:
        assert self._notifier is not None
        pocs = [uid for uid in (step.primary_poc_id, step.backup_poc_id) if uid]
        recipients = await self._emails_for(pocs)
        if recipients:
            await self._notifier.send_step_trigger(recipients, step)

    async def _notify_status_change(
        self,
        step: ReleaseStep,
        previous: StepStatus,
        status: StepStatus,
        actor: str,
    ) -> None:
        assert self._notifier is not None
        recipients = await self._emails_for(step.stakeholder_ids)
        if not recipients:
            return
        if actor == SYSTEM_ACTOR:
            actor_name = "System"
        else:
            user = await self._store.get_user(actor)
            actor_name = user.display_name if user else actor
        await self._notifier.send_status_change(recipients, step, previous, status, actor_name)

    async def _notify_completion(self, plan: ReleasePlan, stakeholder_ids: list[str]) -> None:
        assert self._notifier is not None
        recipients = await self._emails_for(stakeholder_ids)
        await self._notifier.send_release_completion(plan, recipients)

    async def _notify_assignment(self, step: ReleaseStep, user_id: str, role: str) -> None:
        assert self._notifier is not None
        recipients = await self._emails_for([user_id])
        if recipients:
            await self._notifier.send_step_assignment(recipients[0], step, role)


def _stakeholder_ids(steps: Iterable[ReleaseStep]) -> list[str]:
    ids: dict[str, None] = {}
    for step in steps:
        for user_id in step.stakeholder_ids:
            ids.setdefault(user_id, None)
    return list(ids)


def _dependency_note(step: ReleaseStep, reference: ReleaseStep | None) -> str:
    name = reference.name if reference else "unknown"
    if step.depends_on_step_id and reference and step.depends_on_step_id == reference.id:
        return f"Automatically triggered after step '{name}' completed"
    return f"Automatically triggered together with step '{name}'"
