"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from releasepilot.scheduler import SchedulingEngine
from releasepilot.storage import (
    Database,
    ReleasePlan,
    ReleasePlanRepository,
    ReleaseStep,
    ReleaseStepRepository,
    ReleaseStore,
    SchedulingType,
    StepCategory,
    User,
    UserRepository,
    UserRole,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock handed to the engine."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingNotifier:
    """Notifier that records every request instead of sending mail."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def of(self, kind: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.calls if name == kind]

    async def send_step_trigger(self, recipients: list[str], step: ReleaseStep) -> None:
        self.calls.append(("trigger", {"recipients": recipients, "step_id": step.id}))

    async def send_status_change(
        self,
        recipients: list[str],
        step: ReleaseStep,
        previous_status: Any,
        new_status: Any,
        actor_name: str,
    ) -> None:
        self.calls.append(
            (
                "status_change",
                {
                    "recipients": recipients,
                    "step_id": step.id,
                    "previous": previous_status,
                    "new": new_status,
                    "actor_name": actor_name,
                },
            )
        )

    async def send_release_completion(self, plan: ReleasePlan, recipients: list[str]) -> None:
        self.calls.append(("completion", {"recipients": recipients, "plan_id": plan.id}))

    async def send_step_assignment(self, recipient: str, step: ReleaseStep, role: str) -> None:
        self.calls.append(
            ("assignment", {"recipient": recipient, "step_id": step.id, "role": role})
        )


class EventLog:
    """Broadcast callback collecting published events."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def __call__(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event["type"] for event in self.events]


class Factory:
    """Creates users, plans and steps directly in the database."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def user(self, email: str, role: UserRole = UserRole.POC, **kwargs: Any) -> User:
        with self.db.session_scope() as session:
            return UserRepository(session).create(User(email=email, role=role, **kwargs))

    def plan(
        self, name: str = "Spring release", version: str = "1.0.0", **kwargs: Any
    ) -> ReleasePlan:
        kwargs.setdefault("created_by", "tester")
        with self.db.session_scope() as session:
            return ReleasePlanRepository(session).create(
                ReleasePlan(name=name, version=version, **kwargs)
            )

    def step(
        self,
        plan: ReleasePlan,
        name: str,
        scheduling_type: SchedulingType = SchedulingType.MANUAL,
        **kwargs: Any,
    ) -> ReleaseStep:
        kwargs.setdefault("category", StepCategory.ACTUAL_RELEASE)
        with self.db.session_scope() as session:
            return ReleaseStepRepository(session).create(
                ReleaseStep(
                    release_plan_id=plan.id,
                    name=name,
                    scheduling_type=scheduling_type,
                    **kwargs,
                )
            )


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Temporary directory for tests."""
    return tmp_path


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def store(db: Database) -> ReleaseStore:
    """Persistence gateway over the in-memory database."""
    return ReleaseStore(db)


@pytest.fixture
def factory(db: Database) -> Factory:
    """Test data factory."""
    return Factory(db)


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at NOW."""
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Notifier recording requests."""
    return RecordingNotifier()


@pytest.fixture
def events() -> EventLog:
    """Broadcast callback recording events."""
    return EventLog()


@pytest.fixture
def engine(
    store: ReleaseStore,
    notifier: RecordingNotifier,
    events: EventLog,
    clock: FakeClock,
) -> SchedulingEngine:
    """Scheduling engine wired to recording collaborators."""
    return SchedulingEngine(store, notifier, events, clock=clock)
