"""Mail transports for ReleasePilot notifications.

``SmtpMailer`` delivers through an SMTP server. When no SMTP host is
configured, ``LogMailer`` logs each message instead of sending it.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from collections import deque
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Protocol

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from releasepilot.errors import NotificationError

if TYPE_CHECKING:
    from releasepilot.config import SmtpConfig

logger = logging.getLogger(__name__)

# Connection-level failures worth another attempt
TRANSIENT_SMTP_ERRORS: tuple[type[BaseException], ...] = (
    smtplib.SMTPConnectError,
    smtplib.SMTPServerDisconnected,
    ConnectionError,
    TimeoutError,
)


@dataclass
class EmailMessage:
    """An outgoing HTML email."""

    sender: str
    to: list[str]
    subject: str
    html: str
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)

    @property
    def recipients(self) -> list[str]:
        """Every envelope recipient, To, Cc and Bcc."""
        return [*self.to, *self.cc, *self.bcc]

    def to_mime(self) -> MIMEMultipart:
        """Build the MIME message. Bcc is left out of the headers."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.to)
        if self.cc:
            msg["Cc"] = ", ".join(self.cc)
        msg.attach(MIMEText(self.html, "html"))
        return msg


class Mailer(Protocol):
    """Delivers an EmailMessage."""

    async def send(self, message: EmailMessage) -> None: ...


class LogMailer:
    """Logs messages instead of sending them. Used when SMTP is not configured.

    The last ``keep_last`` messages stay readable on ``sent``.
    """

    def __init__(self, keep_last: int = 100) -> None:
        self.sent: deque[EmailMessage] = deque(maxlen=keep_last)

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)
        logger.info(
            f"Email (log only): to={', '.join(message.to)} subject='{message.subject}'"
        )


class SmtpMailer:
    """Sends messages through SMTP in a worker thread, retrying transient failures."""

    def __init__(
        self,
        config: SmtpConfig,
        *,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
    ) -> None:
        """Initialize the mailer.

        Args:
            config: SMTP connection settings. ``config.host`` must be set.
            max_attempts: Total delivery attempts for transient failures.
            initial_delay: First backoff delay in seconds.
            max_delay: Upper bound for the backoff delay.
        """
        if not config.host:
            raise NotificationError("SmtpMailer requires an SMTP host")
        self._config = config
        self._max_attempts = max_attempts
        self._initial_delay = initial_delay
        self._max_delay = max_delay

    async def send(self, message: EmailMessage) -> None:
        """Deliver a message.

        Raises:
            NotificationError: If delivery failed after all attempts.
        """
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(min=self._initial_delay, max=self._max_delay),
            retry=retry_if_exception_type(TRANSIENT_SMTP_ERRORS),
            reraise=True,
        )

        try:
            async for attempt in retryer:
                with attempt:
                    logger.debug(
                        f"Sending '{message.subject}', attempt {attempt.retry_state.attempt_number}"
                    )
                    await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send '{message.subject}': {e}") from e

        logger.info(f"Email sent: to={', '.join(message.to)} subject='{message.subject}'")

    def _send_sync(self, message: EmailMessage) -> None:
        cfg = self._config
        assert cfg.host is not None
        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as smtp:
            if cfg.use_tls:
                smtp.starttls()
            if cfg.username and cfg.password:
                smtp.login(cfg.username, cfg.password)
            smtp.send_message(
                message.to_mime(),
                from_addr=message.sender,
                to_addrs=message.recipients,
            )


def build_mailer(config: SmtpConfig) -> Mailer:
    """Pick the transport for a configuration."""
    if config.host:
        return SmtpMailer(config)
    logger.warning("No SMTP host configured, emails will only be logged")
    return LogMailer()
