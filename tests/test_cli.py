"""Tests for the ReleasePilot CLI."""

import json
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from releasepilot import __version__
from releasepilot.cli import app
from releasepilot.storage import (
    Database,
    ReleasePlan,
    ReleasePlanRepository,
    ReleaseStep,
    ReleaseStepRepository,
    SchedulingType,
    StepCategory,
    UserRepository,
    UserRole,
)


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temporary home directory and patch paths."""
    releasepilot_dir = tmp_path / ".releasepilot"
    logs_dir = releasepilot_dir / "logs"
    config_file = releasepilot_dir / "config.yaml"

    # Patch the CLI constants to use temp directory
    monkeypatch.setattr("releasepilot.cli.RELEASEPILOT_DIR", releasepilot_dir)
    monkeypatch.setattr("releasepilot.cli.LOGS_DIR", logs_dir)
    monkeypatch.setattr("releasepilot.cli.CONFIG_FILE", config_file)

    # Also patch in the commands modules
    monkeypatch.setattr("releasepilot.cli.commands.init.RELEASEPILOT_DIR", releasepilot_dir)
    monkeypatch.setattr("releasepilot.cli.commands.init.LOGS_DIR", logs_dir)
    monkeypatch.setattr("releasepilot.cli.commands.init.CONFIG_FILE", config_file)
    monkeypatch.setattr("releasepilot.cli.commands.serve.RELEASEPILOT_DIR", releasepilot_dir)
    monkeypatch.setattr("releasepilot.cli.commands.serve.LOGS_DIR", logs_dir)
    monkeypatch.setattr("releasepilot.cli.utils.CONFIG_FILE", config_file)

    monkeypatch.setenv("RELEASEPILOT_DATABASE_URL", f"sqlite:///{releasepilot_dir / 'test.db'}")
    releasepilot_dir.mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture
def home_db(temp_home: Path) -> Database:
    """Database the CLI commands will open."""
    db = Database(f"sqlite:///{temp_home / '.releasepilot' / 'test.db'}")
    db.create_tables()
    return db


class TestHelp:
    """Tests for help output."""

    def test_help_shows_commands(self, runner: CliRunner) -> None:
        """Test help shows available commands."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "add-user", "plans", "tick", "serve", "stop"):
            assert command in result.output


class TestVersion:
    """Tests for version command."""

    def test_version(self, runner: CliRunner) -> None:
        """Test version command shows version."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestInit:
    """Tests for init command."""

    def test_init_creates_files(self, runner: CliRunner, temp_home: Path) -> None:
        """Test init writes the config and creates the database."""
        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0, result.output
        assert "Initialized ReleasePilot" in result.output
        releasepilot_dir = temp_home / ".releasepilot"
        assert (releasepilot_dir / "config.yaml").exists()
        assert (releasepilot_dir / "logs").is_dir()
        assert (releasepilot_dir / "test.db").exists()

    def test_init_twice_requires_force(self, runner: CliRunner, temp_home: Path) -> None:
        """Test a second init refuses without --force."""
        runner.invoke(app, ["init"])

        result = runner.invoke(app, ["init"])
        assert result.exit_code == 1
        assert "already initialized" in result.output

        result = runner.invoke(app, ["init", "--force"])
        assert result.exit_code == 0

    def test_invalid_config(self, runner: CliRunner, temp_home: Path) -> None:
        """Test a broken config file is reported."""
        (temp_home / ".releasepilot" / "config.yaml").write_text("scheduler: [unclosed")

        result = runner.invoke(app, ["plans"])

        assert result.exit_code == 1
        assert "Error" in result.output


class TestAddUser:
    """Tests for add-user command."""

    def test_add_user(self, runner: CliRunner, home_db: Database) -> None:
        """Test a user is created and its id printed."""
        result = runner.invoke(
            app, ["add-user", "lead@example.com", "--role", "team_lead", "--first-name", "Leo"]
        )

        assert result.exit_code == 0, result.output
        assert "Created team_lead lead@example.com" in result.output
        with home_db.session_scope() as session:
            user = UserRepository(session).get_by_email("lead@example.com")
            assert user is not None
            assert user.role == UserRole.TEAM_LEAD
            assert user.id in result.output

    def test_duplicate_email(self, runner: CliRunner, home_db: Database) -> None:
        """Test an existing email is refused."""
        runner.invoke(app, ["add-user", "rm@example.com"])

        result = runner.invoke(app, ["add-user", "rm@example.com"])

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_invalid_role(self, runner: CliRunner, home_db: Database) -> None:
        """Test an unknown role is a usage error."""
        result = runner.invoke(app, ["add-user", "x@example.com", "--role", "admin"])
        assert result.exit_code == 2


class TestPlans:
    """Tests for plans command."""

    def test_no_plans(self, runner: CliRunner, home_db: Database) -> None:
        """Test the empty listing."""
        result = runner.invoke(app, ["plans"])
        assert result.exit_code == 0
        assert "No release plans found" in result.output

    def test_list_and_show(self, runner: CliRunner, home_db: Database) -> None:
        """Test listing plans and showing one by id prefix."""
        with home_db.session_scope() as session:
            plan = ReleasePlanRepository(session).create(
                ReleasePlan(name="Autumn", version="4.0.0", created_by="cli")
            )
            ReleaseStepRepository(session).create(
                ReleaseStep(
                    release_plan_id=plan.id,
                    name="Freeze",
                    category=StepCategory.BEFORE_RELEASE,
                    scheduling_type=SchedulingType.MANUAL,
                )
            )
            plan_id = plan.id

        listing = runner.invoke(app, ["plans"])
        assert listing.exit_code == 0
        assert "Autumn" in listing.output

        shown = runner.invoke(app, ["plans", "--id", plan_id[:8]])
        assert shown.exit_code == 0
        assert "Freeze" in shown.output

        as_json = runner.invoke(app, ["plans", "--id", plan_id, "--json"])
        data = json.loads(as_json.output)
        assert data["version"] == "4.0.0"
        assert [s["name"] for s in data["steps"]] == ["Freeze"]

    def test_unknown_plan(self, runner: CliRunner, home_db: Database) -> None:
        """Test an unknown id fails."""
        result = runner.invoke(app, ["plans", "--id", "nope"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestTick:
    """Tests for tick command."""

    def test_tick_triggers_due_steps(self, runner: CliRunner, home_db: Database) -> None:
        """Test a past fixed-time step is started by a manual tick."""
        with home_db.session_scope() as session:
            plan = ReleasePlanRepository(session).create(
                ReleasePlan(name="Autumn", version="4.0.0", created_by="cli")
            )
            step = ReleaseStepRepository(session).create(
                ReleaseStep(
                    release_plan_id=plan.id,
                    name="Freeze",
                    category=StepCategory.BEFORE_RELEASE,
                    scheduling_type=SchedulingType.FIXED_TIME,
                    scheduled_time=datetime(2020, 1, 1, 9, 0),
                )
            )
            step_id = step.id

        result = runner.invoke(app, ["tick", "--no-notify", "--json"])

        assert result.exit_code == 0, result.output
        report = json.loads(result.output)
        assert report["triggered"] == [step_id]
        assert report["errors"] == []

        again = runner.invoke(app, ["tick", "--no-notify"])
        assert again.exit_code == 0
        assert "triggered 0" in again.output


class TestServe:
    """Tests for serve and stop commands."""

    def test_stop_when_not_running(self, runner: CliRunner, temp_home: Path) -> None:
        """Test stop without a server."""
        result = runner.invoke(app, ["stop"])
        assert result.exit_code == 0
        assert "not running" in result.output

    def test_serve_foreground(self, runner: CliRunner, temp_home: Path) -> None:
        """Test serve runs the server with config defaults and cleans its PID file."""
        with (
            patch("releasepilot.cli.commands.serve.run_server") as run_server,
            patch("releasepilot.cli.commands.serve.setup_logging"),
        ):
            result = runner.invoke(app, ["serve", "--port", "9100"])

        assert result.exit_code == 0, result.output
        _, host, port = run_server.call_args.args
        assert (host, port) == ("127.0.0.1", 9100)
        assert not (temp_home / ".releasepilot" / "releasepilot.pid").exists()
