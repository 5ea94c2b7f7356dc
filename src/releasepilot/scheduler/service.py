"""APScheduler service driving the poll tick and fixed-time step timers."""

from __future__ import annotations

import logging
from datetime import UTC
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from releasepilot.storage.models import SchedulingType, StepStatus

from .triggers import scheduled_at_utc

if TYPE_CHECKING:
    from datetime import datetime

    from releasepilot.storage.models import ReleaseStep

    from .engine import SchedulingEngine
    from .report import TickReport

logger = logging.getLogger(__name__)

POLL_JOB_ID = "releasepilot:poll"


def step_job_id(step_id: str) -> str:
    """APScheduler job id of a step's one-shot timer."""
    return f"step:{step_id}"


class SchedulerService:
    """APScheduler-based driver for a SchedulingEngine.

    Runs the engine's poll tick on a fixed interval and, optionally, a
    one-shot timer per pending fixed-time step so it starts on the exact
    moment instead of on the next poll. Timers live in memory and are
    rebuilt from the database by :meth:`restore_timers` at startup.
    """

    def __init__(
        self,
        engine: SchedulingEngine,
        poll_interval_seconds: int = 60,
        step_timers: bool = True,
    ) -> None:
        """Initialize the scheduler service.

        Args:
            engine: The engine whose tick and triggers are scheduled.
            poll_interval_seconds: Seconds between two poll ticks.
            step_timers: Register one-shot timers for fixed-time steps.
        """
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Only one instance at a time
            "misfire_grace_time": 60,  # Allow 60s late execution
        }

        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone=UTC)
        self._engine = engine
        self._poll_interval = poll_interval_seconds
        self._step_timers = step_timers
        self._running = False
        self.last_report: TickReport | None = None

        engine.set_timer_registry(self)

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def engine(self) -> SchedulingEngine:
        """The scheduled engine."""
        return self._engine

    def start(self) -> None:
        """Start the scheduler and the poll job.

        Must be called from within the running event loop.
        """
        if self._running:
            return

        self._scheduler.add_job(
            self._poll,
            trigger=IntervalTrigger(seconds=self._poll_interval, timezone=UTC),
            id=POLL_JOB_ID,
            name="Release step poll",
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(f"Scheduler started (poll every {self._poll_interval}s)")

    def shutdown(self, wait: bool = False) -> None:
        """Stop the scheduler and drop every registered timer.

        Args:
            wait: Whether to wait for running jobs to complete.
        """
        if self._running:
            self._scheduler.shutdown(wait=wait)
            self._running = False
            logger.info("Scheduler stopped")
        self._scheduler.remove_all_jobs()
        self._engine.set_timer_registry(None)

    def next_poll(self) -> datetime | None:
        """Next time the poll tick will run."""
        job = self._scheduler.get_job(POLL_JOB_ID)
        return job.next_run_time if job else None

    async def _poll(self) -> None:
        try:
            self.last_report = await self._engine.run_tick()
        except Exception as e:
            logger.exception(f"Poll tick failed: {e}")

    async def _fire_timer(self, step_id: str) -> None:
        logger.debug(f"Timer fired for step {step_id}")
        try:
            await self._engine.trigger_step(
                step_id, notes="Automatically triggered by scheduler at scheduled time"
            )
        except Exception as e:
            logger.exception(f"Timer trigger failed for step {step_id}: {e}")

    # ------------------------------------------------------------------
    # Step timers
    # ------------------------------------------------------------------

    def schedule_step(self, step: ReleaseStep) -> str | None:
        """Register or replace the one-shot timer of a fixed-time step.

        Steps that are not pending fixed-time steps, or whose moment has
        already passed, get no timer; any existing one is removed. The poll
        tick picks up past-due steps.

        Args:
            step: The step to schedule.

        Returns:
            The job ID, or None if no timer was registered.
        """
        job_id = step_job_id(step.id)
        due = scheduled_at_utc(step)

        if (
            not self._step_timers
            or step.scheduling_type != SchedulingType.FIXED_TIME
            or step.status != StepStatus.NOT_STARTED
            or due is None
            or due <= self._engine.now()
        ):
            self.unschedule_step(step.id)
            return None

        job = self._scheduler.add_job(
            self._fire_timer,
            trigger=DateTrigger(run_date=due, timezone=UTC),
            id=job_id,
            name=step.name,
            kwargs={"step_id": step.id},
            replace_existing=True,
        )

        logger.info(f"Scheduled step '{step.name}' at {due.isoformat()} with job ID: {job.id}")
        return job.id

    def unschedule_step(self, step_id: str) -> bool:
        """Remove a step's timer.

        Args:
            step_id: The step ID.

        Returns:
            True if removed, False if not found.
        """
        job_id = step_job_id(step_id)
        if self._scheduler.get_job(job_id) is None:
            return False

        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False

        logger.info(f"Removed timer for step: {step_id}")
        return True

    def has_timer(self, step_id: str) -> bool:
        """Check whether a step has a pending timer."""
        return self._scheduler.get_job(step_job_id(step_id)) is not None

    def get_timers(self) -> list[dict[str, Any]]:
        """Get all registered step timers.

        Returns:
            List of timer information dictionaries.
        """
        return [
            {
                "id": job.id,
                "step_id": job.kwargs.get("step_id"),
                "name": job.name,
                "run_at": job.trigger.run_date,
            }
            for job in self._scheduler.get_jobs()
            if job.id.startswith("step:")
        ]

    async def restore_timers(self) -> int:
        """Register timers for every pending fixed-time step.

        Returns:
            Number of timers registered.
        """
        if not self._step_timers:
            return 0

        count = 0
        for step in await self._engine.store.list_pending_fixed_time_steps():
            if self.schedule_step(step):
                count += 1

        logger.info(f"Restored {count} step timer(s)")
        return count
