"""Tests for the storage layer."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from conftest import NOW, Factory
from releasepilot.storage import (
    SYSTEM_ACTOR,
    Database,
    GlobalSettingRepository,
    PlanStatus,
    ReleasePlanRepository,
    ReleaseStepRepository,
    ReleaseStore,
    SchedulingType,
    StepHistoryRepository,
    StepStatus,
    User,
    UserRepository,
    UserRole,
)

NAIVE_NOW = NOW.replace(tzinfo=None)


class TestDatabase:
    """Tests for Database."""

    def test_file_database_creates_parent(self, temp_dir: Path) -> None:
        """Test a file path creates missing directories."""
        db = Database(temp_dir / "nested" / "releasepilot.db")
        db.create_tables()

        assert (temp_dir / "nested").is_dir()
        assert db.url.startswith("sqlite:///")
        db.dispose()

    def test_session_scope_rolls_back(self, db: Database) -> None:
        """Test an exception inside the scope discards the changes."""
        with pytest.raises(RuntimeError), db.session_scope() as session:
            UserRepository(session).create(User(email="x@example.com", role=UserRole.POC))
            raise RuntimeError("boom")

        with db.session_scope() as session:
            assert UserRepository(session).get_by_email("x@example.com") is None


class TestUserRepository:
    """Tests for UserRepository."""

    def test_lookup(self, db: Database, factory: Factory) -> None:
        """Test users can be found by id, email, role and id list."""
        lead = factory.user("lead@example.com", UserRole.TEAM_LEAD)
        poc = factory.user("poc@example.com")

        with db.session_scope() as session:
            repo = UserRepository(session)
            assert repo.get_by_id(lead.id).email == "lead@example.com"
            assert repo.get_by_email("poc@example.com").id == poc.id
            assert [u.id for u in repo.get_by_role(UserRole.TEAM_LEAD)] == [lead.id]
            assert {u.id for u in repo.get_by_ids([lead.id, poc.id, "nobody"])} == {
                lead.id,
                poc.id,
            }
            assert repo.get_by_ids([]) == []

    def test_display_name(self, factory: Factory) -> None:
        """Test display name falls back to the email."""
        named = factory.user("ada@example.com", first_name="Ada", last_name="Lovelace")
        unnamed = factory.user("anon@example.com")

        assert named.display_name == "Ada Lovelace"
        assert unnamed.display_name == "anon@example.com"


class TestReleasePlanRepository:
    """Tests for ReleasePlanRepository."""

    def test_get_active_prefers_active(self, db: Database, factory: Factory) -> None:
        """Test the active plan wins over planning ones."""
        factory.plan("Planned", "2.0.0")
        active = factory.plan("Running", "1.9.0", status=PlanStatus.ACTIVE)
        factory.plan("Done", "1.8.0", status=PlanStatus.COMPLETED)

        with db.session_scope() as session:
            assert ReleasePlanRepository(session).get_active().id == active.id

    def test_get_active_falls_back_to_planning(self, db: Database, factory: Factory) -> None:
        """Test a planning plan is returned when nothing is active."""
        planned = factory.plan("Planned", "2.0.0")
        factory.plan("Done", "1.8.0", status=PlanStatus.COMPLETED)

        with db.session_scope() as session:
            assert ReleasePlanRepository(session).get_active().id == planned.id

    def test_get_active_none(self, db: Database) -> None:
        """Test None is returned without any open plan."""
        with db.session_scope() as session:
            assert ReleasePlanRepository(session).get_active() is None

    def test_set_status_is_conditional(self, db: Database, factory: Factory) -> None:
        """Test set_status skips equal and excluded statuses."""
        plan = factory.plan()

        with db.session_scope() as session:
            repo = ReleasePlanRepository(session)
            assert repo.set_status(plan.id, PlanStatus.ACTIVE) is True
            assert repo.set_status(plan.id, PlanStatus.ACTIVE) is False
            assert repo.set_status(plan.id, PlanStatus.CANCELLED) is True
            assert (
                repo.set_status(plan.id, PlanStatus.ACTIVE, exclude=[PlanStatus.CANCELLED])
                is False
            )

    def test_delete_cascades_steps(self, db: Database, factory: Factory) -> None:
        """Test deleting a plan removes its steps."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        with db.session_scope() as session:
            assert ReleasePlanRepository(session).delete(plan.id) is True
            assert ReleasePlanRepository(session).delete(plan.id) is False

        with db.session_scope() as session:
            assert ReleaseStepRepository(session).get_by_id(step.id) is None


class TestReleaseStepRepository:
    """Tests for ReleaseStepRepository."""

    def test_get_by_plan_in_order(self, db: Database, factory: Factory) -> None:
        """Test steps come back in display order."""
        plan = factory.plan()
        second = factory.step(plan, "Second", order=2)
        first = factory.step(plan, "First", order=1)

        with db.session_scope() as session:
            steps = ReleaseStepRepository(session).get_by_plan(plan.id)

        assert [s.id for s in steps] == [first.id, second.id]

    def test_pending_fixed_time(self, db: Database, factory: Factory) -> None:
        """Test only not_started fixed-time steps with a time are pending."""
        plan = factory.plan()
        later = factory.step(
            plan, "Later", SchedulingType.FIXED_TIME, scheduled_time=NAIVE_NOW + timedelta(hours=2)
        )
        sooner = factory.step(
            plan, "Sooner", SchedulingType.FIXED_TIME, scheduled_time=NAIVE_NOW
        )
        factory.step(
            plan,
            "Started",
            SchedulingType.FIXED_TIME,
            scheduled_time=NAIVE_NOW,
            status=StepStatus.STARTED,
        )
        factory.step(plan, "No time", SchedulingType.FIXED_TIME)
        factory.step(plan, "Manual")

        with db.session_scope() as session:
            pending = ReleaseStepRepository(session).get_pending_fixed_time()

        assert [s.id for s in pending] == [sooner.id, later.id]

    def test_mark_started_only_once(self, db: Database, factory: Factory) -> None:
        """Test the not_started -> started swap succeeds a single time."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        with db.session_scope() as session:
            repo = ReleaseStepRepository(session)
            assert repo.mark_started(step.id, NOW) is True
            assert repo.mark_started(step.id, NOW + timedelta(minutes=1)) is False

        with db.session_scope() as session:
            stored = ReleaseStepRepository(session).get_by_id(step.id)
            assert stored.status == StepStatus.STARTED
            assert stored.started_at == NAIVE_NOW

    def test_delete_clears_references(self, db: Database, factory: Factory) -> None:
        """Test deleting a step nulls references held by siblings."""
        plan = factory.plan()
        build = factory.step(plan, "Build")
        after = factory.step(plan, "After", SchedulingType.AFTER_STEP, depends_on_step_id=build.id)
        alongside = factory.step(
            plan, "Alongside", SchedulingType.SIMULTANEOUS, simultaneous_with_step_id=build.id
        )

        with db.session_scope() as session:
            repo = ReleaseStepRepository(session)
            assert {s.id for s in repo.get_referencing(build.id)} == {after.id, alongside.id}
            assert repo.delete(build.id) is True
            assert repo.delete(build.id) is False

        with db.session_scope() as session:
            repo = ReleaseStepRepository(session)
            assert repo.get_by_id(after.id).depends_on_step_id is None
            assert repo.get_by_id(alongside.id).simultaneous_with_step_id is None


class TestGlobalSettingRepository:
    """Tests for GlobalSettingRepository."""

    def test_upsert(self, db: Database) -> None:
        """Test settings are created and then updated in place."""
        with db.session_scope() as session:
            repo = GlobalSettingRepository(session)
            repo.upsert("email_default_cc", "ops@example.com", "Copied on every mail", "u1")
            repo.upsert("email_default_cc", "release@example.com", updated_by="u2")

        with db.session_scope() as session:
            setting = GlobalSettingRepository(session).get("email_default_cc")
            assert setting.value == "release@example.com"
            assert setting.description == "Copied on every mail"
            assert setting.updated_by == "u2"

    def test_delete(self, db: Database) -> None:
        """Test deleting a setting."""
        with db.session_scope() as session:
            repo = GlobalSettingRepository(session)
            repo.upsert("notifications_enabled", "true")
            assert repo.delete("notifications_enabled") is True
            assert repo.delete("notifications_enabled") is False


class TestReleaseStore:
    """Tests for the async store used by the engine."""

    @pytest.mark.asyncio
    async def test_mark_step_started_writes_history(
        self, store: ReleaseStore, factory: Factory
    ) -> None:
        """Test starting a step appends one history row."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        started = await store.mark_step_started(step.id, actor=SYSTEM_ACTOR, notes="tick", at=NOW)
        again = await store.mark_step_started(step.id, actor=SYSTEM_ACTOR, notes="tick", at=NOW)

        assert started is not None
        assert started.status == StepStatus.STARTED
        assert again is None
        history = await store.list_history(step.id)
        assert len(history) == 1
        assert history[0].notes == "tick"

    @pytest.mark.asyncio
    async def test_set_step_status_stamps_times(
        self, store: ReleaseStore, factory: Factory
    ) -> None:
        """Test status edits stamp started_at and completed_at once."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy")
        later = NOW + timedelta(hours=1)

        updated, previous = await store.set_step_status(
            step.id, StepStatus.IN_PROGRESS, actor="u1", at=NOW
        )
        assert previous == StepStatus.NOT_STARTED
        assert updated.started_at == NAIVE_NOW

        updated, previous = await store.set_step_status(
            step.id, StepStatus.COMPLETED, actor="u1", at=later
        )
        assert previous == StepStatus.IN_PROGRESS
        assert updated.started_at == NAIVE_NOW
        assert updated.completed_at == later.replace(tzinfo=None)

        assert len(await store.list_history(step.id)) == 2

    @pytest.mark.asyncio
    async def test_set_step_status_missing(self, store: ReleaseStore) -> None:
        """Test editing an unknown step returns None."""
        assert await store.set_step_status("missing", StepStatus.COMPLETED, actor="u1") is None

    @pytest.mark.asyncio
    async def test_mark_plan_completed_once(self, store: ReleaseStore, factory: Factory) -> None:
        """Test a plan is completed by the first caller only."""
        plan = factory.plan(status=PlanStatus.ACTIVE)

        first = await store.mark_plan_completed(plan.id)
        second = await store.mark_plan_completed(plan.id)

        assert first is not None
        assert first.status == PlanStatus.COMPLETED
        assert second is None

    @pytest.mark.asyncio
    async def test_mark_cancelled_plan_completed(
        self, store: ReleaseStore, factory: Factory
    ) -> None:
        """Test a cancelled plan is never completed."""
        plan = factory.plan(status=PlanStatus.CANCELLED)

        assert await store.mark_plan_completed(plan.id) is None

    @pytest.mark.asyncio
    async def test_add_history(self, store: ReleaseStore, db: Database, factory: Factory) -> None:
        """Test history rows can be appended directly."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        entry = await store.add_history(step.id, None, StepStatus.NOT_STARTED, actor="u1")

        assert entry.previous_status is None
        with db.session_scope() as session:
            assert StepHistoryRepository(session).count_by_step(step.id) == 1

    @pytest.mark.asyncio
    async def test_get_setting(self, store: ReleaseStore, db: Database) -> None:
        """Test settings are read by key."""
        with db.session_scope() as session:
            GlobalSettingRepository(session).upsert("email_default_from", "rel@example.com")

        assert await store.get_setting("email_default_from") == "rel@example.com"
        assert await store.get_setting("missing") is None

    @pytest.mark.asyncio
    async def test_created_timestamps_are_set(self, store: ReleaseStore, factory: Factory) -> None:
        """Test new rows get a creation timestamp."""
        plan = factory.plan()

        stored = await store.get_plan(plan.id)

        assert stored is not None
        assert stored.created_at is not None
        assert stored.created_at <= datetime.now(UTC).replace(tzinfo=None)
