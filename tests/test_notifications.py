"""Tests for notification emails."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from conftest import Factory
from releasepilot.config import SmtpConfig
from releasepilot.errors import NotificationError
from releasepilot.notifications import (
    EmailMessage,
    EmailNotifier,
    EmailTemplates,
    LogMailer,
    SmtpMailer,
    build_mailer,
)
from releasepilot.storage import (
    Database,
    GlobalSettingRepository,
    PlanStatus,
    ReleaseStore,
    StepStatus,
)


@pytest.fixture
def mailer() -> LogMailer:
    """Mailer that keeps sent messages."""
    return LogMailer()


@pytest.fixture
def email_notifier(store: ReleaseStore, mailer: LogMailer) -> EmailNotifier:
    """Notifier wired to the log mailer."""
    return EmailNotifier(store, mailer, default_sender="releases@example.com")


def set_setting(db: Database, key: str, value: str) -> None:
    with db.session_scope() as session:
        GlobalSettingRepository(session).upsert(key, value)


class TestEmailTemplates:
    """Tests for subject lines and rendered bodies."""

    def test_subject(self) -> None:
        """Test subjects carry the product prefix."""
        assert EmailTemplates().subject("Step Triggered", "Deploy") == (
            "ReleasePilot: Step Triggered - Deploy"
        )

    def test_status_change_body(self, factory: Factory) -> None:
        """Test the status change body shows both statuses and the actor."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy <api>", description="Roll out")

        html = EmailTemplates().render(
            "status_change.html",
            step=step,
            previous_status=StepStatus.STARTED,
            new_status=StepStatus.IN_PROGRESS,
            actor_name="Grace Hopper",
        )

        assert "Started" in html
        assert "In Progress" in html
        assert "Grace Hopper" in html
        assert "Deploy &lt;api&gt;" in html


class TestEmailNotifier:
    """Tests for EmailNotifier."""

    @pytest.mark.asyncio
    async def test_step_trigger(
        self, email_notifier: EmailNotifier, mailer: LogMailer, factory: Factory
    ) -> None:
        """Test a trigger email goes to the given recipients."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy", status=StepStatus.STARTED)

        await email_notifier.send_step_trigger(["poc@example.com"], step)

        assert len(mailer.sent) == 1
        message = mailer.sent[0]
        assert message.to == ["poc@example.com"]
        assert message.sender == "releases@example.com"
        assert message.subject == "ReleasePilot: Step Triggered - Deploy"
        assert "ready for execution" in message.html

    @pytest.mark.asyncio
    async def test_release_completion(
        self, email_notifier: EmailNotifier, mailer: LogMailer, factory: Factory
    ) -> None:
        """Test the completion subject names the release and version."""
        plan = factory.plan("Spring release", "2.4.0", status=PlanStatus.COMPLETED)

        await email_notifier.send_release_completion(plan, ["a@example.com", "b@example.com"])

        assert mailer.sent[0].subject == "ReleasePilot: Release Completed - Spring release 2.4.0"
        assert mailer.sent[0].to == ["a@example.com", "b@example.com"]

    @pytest.mark.asyncio
    async def test_step_assignment_roles(
        self, email_notifier: EmailNotifier, mailer: LogMailer, factory: Factory
    ) -> None:
        """Test the assignment wording depends on the role."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        await email_notifier.send_step_assignment("lead@example.com", step, "team_lead")
        await email_notifier.send_step_assignment("poc@example.com", step, "primary_poc")

        assert "team lead" in mailer.sent[0].html
        assert "Point of Contact (POC)" in mailer.sent[1].html
        assert mailer.sent[1].subject == "ReleasePilot: Step Assignment - Deploy"

    @pytest.mark.asyncio
    async def test_settings_apply(
        self,
        email_notifier: EmailNotifier,
        mailer: LogMailer,
        db: Database,
        factory: Factory,
    ) -> None:
        """Test sender, cc and bcc come from global settings."""
        set_setting(db, "email_default_from", "rm@example.com")
        set_setting(db, "email_default_cc", "ops@example.com, qa@example.com")
        set_setting(db, "email_default_bcc", "audit@example.com")
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        await email_notifier.send_step_trigger(["poc@example.com"], step)

        message = mailer.sent[0]
        assert message.sender == "rm@example.com"
        assert message.cc == ["ops@example.com", "qa@example.com"]
        assert message.bcc == ["audit@example.com"]
        assert message.recipients == [
            "poc@example.com",
            "ops@example.com",
            "qa@example.com",
            "audit@example.com",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["false", "0", "Off", " no "])
    async def test_disabled_setting(
        self,
        email_notifier: EmailNotifier,
        mailer: LogMailer,
        db: Database,
        factory: Factory,
        value: str,
    ) -> None:
        """Test nothing is sent when notifications are switched off."""
        set_setting(db, "notifications_enabled", value)
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        assert await email_notifier.enabled() is False
        await email_notifier.send_step_trigger(["poc@example.com"], step)

        assert len(mailer.sent) == 0

    @pytest.mark.asyncio
    async def test_no_recipients(
        self, email_notifier: EmailNotifier, mailer: LogMailer, factory: Factory
    ) -> None:
        """Test an empty recipient list sends nothing."""
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        await email_notifier.send_step_trigger(["", ""], step)

        assert len(mailer.sent) == 0

    @pytest.mark.asyncio
    async def test_mailer_failure_is_logged(
        self, store: ReleaseStore, factory: Factory, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a failing transport never raises to the caller."""
        failing = MagicMock()

        async def send(message: EmailMessage) -> None:
            raise NotificationError("smtp down")

        failing.send = send
        email_notifier = EmailNotifier(store, failing)
        plan = factory.plan()
        step = factory.step(plan, "Deploy")

        await email_notifier.send_step_trigger(["poc@example.com"], step)

        assert "smtp down" in caplog.text


class TestLogMailer:
    """Tests for the log-only transport."""

    @pytest.mark.asyncio
    async def test_keeps_only_recent_messages(self) -> None:
        """Test a long-running process does not accumulate every email."""
        mailer = LogMailer(keep_last=3)

        for number in range(10):
            await mailer.send(
                EmailMessage(
                    sender="rm@example.com",
                    to=["poc@example.com"],
                    subject=f"Message {number}",
                    html="<p>Hi</p>",
                )
            )

        assert [m.subject for m in mailer.sent] == ["Message 7", "Message 8", "Message 9"]


class TestSmtpMailer:
    """Tests for SmtpMailer."""

    @pytest.fixture
    def config(self) -> SmtpConfig:
        """SMTP settings pointing at a fake host."""
        return SmtpConfig(host="smtp.example.com", port=2525, username="user", password="pw")

    @pytest.fixture
    def message(self) -> EmailMessage:
        """A message with cc and bcc recipients."""
        return EmailMessage(
            sender="rm@example.com",
            to=["poc@example.com"],
            subject="Hello",
            html="<p>Hi</p>",
            cc=["ops@example.com"],
            bcc=["audit@example.com"],
        )

    def test_requires_host(self) -> None:
        """Test a mailer without host cannot be built."""
        with pytest.raises(NotificationError):
            SmtpMailer(SmtpConfig())

    def test_build_mailer(self, config: SmtpConfig) -> None:
        """Test the transport follows the configured host."""
        assert isinstance(build_mailer(config), SmtpMailer)
        assert isinstance(build_mailer(SmtpConfig()), LogMailer)

    def test_bcc_not_in_headers(self, message: EmailMessage) -> None:
        """Test Bcc addresses stay out of the MIME headers."""
        mime = message.to_mime()
        assert mime["To"] == "poc@example.com"
        assert mime["Cc"] == "ops@example.com"
        assert mime["Bcc"] is None

    @pytest.mark.asyncio
    async def test_send(self, config: SmtpConfig, message: EmailMessage) -> None:
        """Test a message is sent to every envelope recipient."""
        mailer = SmtpMailer(config, initial_delay=0, max_delay=0)

        with patch("releasepilot.notifications.mailer.smtplib.SMTP") as smtp_cls:
            await mailer.send(message)

        smtp_cls.assert_called_once_with("smtp.example.com", 2525, timeout=10.0)
        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("user", "pw")
        _, kwargs = smtp.send_message.call_args
        assert kwargs["to_addrs"] == ["poc@example.com", "ops@example.com", "audit@example.com"]

    @pytest.mark.asyncio
    async def test_retries_transient_failure(
        self, config: SmtpConfig, message: EmailMessage
    ) -> None:
        """Test a dropped connection is retried."""
        mailer = SmtpMailer(config, initial_delay=0, max_delay=0)
        connection = MagicMock()

        with patch("releasepilot.notifications.mailer.smtplib.SMTP") as smtp_cls:
            smtp_cls.side_effect = [smtplib.SMTPServerDisconnected("gone"), connection]
            await mailer.send(message)

        assert smtp_cls.call_count == 2
        connection.__enter__.return_value.send_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(
        self, config: SmtpConfig, message: EmailMessage
    ) -> None:
        """Test delivery fails after max_attempts transient errors."""
        mailer = SmtpMailer(config, max_attempts=3, initial_delay=0, max_delay=0)

        with patch("releasepilot.notifications.mailer.smtplib.SMTP") as smtp_cls:
            smtp_cls.side_effect = ConnectionRefusedError("refused")
            with pytest.raises(NotificationError, match="refused"):
                await mailer.send(message)

        assert smtp_cls.call_count == 3

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(
        self, config: SmtpConfig, message: EmailMessage
    ) -> None:
        """Test a rejected login fails immediately."""
        mailer = SmtpMailer(config, initial_delay=0, max_delay=0)

        with patch("releasepilot.notifications.mailer.smtplib.SMTP") as smtp_cls:
            smtp = smtp_cls.return_value.__enter__.return_value
            smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
            with pytest.raises(NotificationError):
                await mailer.send(message)

        assert smtp_cls.call_count == 1
