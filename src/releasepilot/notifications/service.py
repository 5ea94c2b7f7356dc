"""Notification gateway: who gets which email when a step or release changes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from .mailer import EmailMessage
from .templates import EmailTemplates

if TYPE_CHECKING:
    from releasepilot.storage import ReleaseStore
    from releasepilot.storage.models import ReleasePlan, ReleaseStep, StepStatus

    from .mailer import Mailer

logger = logging.getLogger(__name__)

_DISABLED_VALUES = frozenset({"false", "0", "no", "off"})


class Notifier(Protocol):
    """What the scheduling engine and API need from the notification gateway."""

    async def send_step_trigger(self, recipients: list[str], step: ReleaseStep) -> None: ...

    async def send_status_change(
        self,
        recipients: list[str],
        step: ReleaseStep,
        previous_status: StepStatus,
        new_status: StepStatus,
        actor_name: str,
    ) -> None: ...

    async def send_release_completion(self, plan: ReleasePlan, recipients: list[str]) -> None: ...

    async def send_step_assignment(self, recipient: str, step: ReleaseStep, role: str) -> None: ...


def _split_addresses(value: str | None) -> list[str]:
    if not value:
        return []
    return [address.strip() for address in value.split(",") if address.strip()]


class EmailNotifier:
    """Sends notification emails. Never raises; failures are logged."""

    def __init__(
        self,
        store: ReleaseStore,
        mailer: Mailer,
        default_sender: str = "noreply@releasepilot.local",
    ) -> None:
        """Initialize the notifier.

        Args:
            store: Used to read the email_* and notifications_enabled settings.
            mailer: Transport used for delivery.
            default_sender: From address when no email_default_from setting exists.
        """
        self._store = store
        self._mailer = mailer
        self._default_sender = default_sender
        self.templates = EmailTemplates()

    async def send_step_trigger(self, recipients: list[str], step: ReleaseStep) -> None:
        await self._send(
            recipients,
            self.templates.subject("Step Triggered", step.name),
            "step_triggered.html",
            step=step,
        )

    async def send_status_change(
        self,
        recipients: list[str],
        step: ReleaseStep,
        previous_status: StepStatus,
        new_status: StepStatus,
        actor_name: str,
    ) -> None:
        await self._send(
            recipients,
            self.templates.subject("Status Update", step.name),
            "status_change.html",
            step=step,
            previous_status=previous_status,
            new_status=new_status,
            actor_name=actor_name,
        )

    async def send_release_completion(self, plan: ReleasePlan, recipients: list[str]) -> None:
        await self._send(
            recipients,
            self.templates.subject("Release Completed", f"{plan.name} {plan.version}"),
            "release_completed.html",
            plan=plan,
        )

    async def send_step_assignment(self, recipient: str, step: ReleaseStep, role: str) -> None:
        if role == "team_lead":
            role_text = "team lead"
            action_text = "assign a POC and manage the step execution"
        else:
            role_text = "Point of Contact (POC)"
            action_text = "execute this step"

        await self._send(
            [recipient],
            self.templates.subject("Step Assignment", step.name),
            "step_assignment.html",
            step=step,
            role_text=role_text,
            action_text=action_text,
        )

    async def enabled(self) -> bool:
        """Whether the notifications_enabled setting allows sending."""
        value = await self._store.get_setting("notifications_enabled")
        return value is None or value.strip().lower() not in _DISABLED_VALUES

    async def _send(
        self,
        recipients: list[str],
        subject: str,
        template: str,
        **context: object,
    ) -> None:
        to = [address for address in recipients if address]
        if not to:
            logger.debug(f"No recipients for '{subject}', skipping")
            return

        try:
            if not await self.enabled():
                logger.info(f"Notifications disabled, not sending '{subject}'")
                return

            sender = await self._store.get_setting("email_default_from")
            cc = await self._store.get_setting("email_default_cc")
            bcc = await self._store.get_setting("email_default_bcc")

            message = EmailMessage(
                sender=sender or self._default_sender,
                to=to,
                subject=subject,
                html=self.templates.render(template, **context),
                cc=_split_addresses(cc),
                bcc=_split_addresses(bcc),
            )
            await self._mailer.send(message)
            logger.info(f"Notification '{subject}' sent to {len(to)} recipient(s)")
        except Exception as e:
            logger.error(f"Failed to send '{subject}' to {', '.join(to)}: {e}")
