"""ReleasePilot email notifications."""

from .mailer import EmailMessage, LogMailer, Mailer, SmtpMailer, build_mailer
from .service import EmailNotifier, Notifier
from .templates import EmailTemplates

__all__ = [
    "EmailMessage",
    "EmailNotifier",
    "EmailTemplates",
    "LogMailer",
    "Mailer",
    "Notifier",
    "SmtpMailer",
    "build_mailer",
]
