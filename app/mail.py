"""Outgoing mail for account notifications."""
from __future__ import annotations

import logging
import smtplib
import threading
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional

from .config import MailSettings

logger = logging.getLogger("starter.mail")


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    body: str
    action_url: Optional[str] = None


class Mailer:
    """Base class for mail transports."""

    def __init__(self, settings: MailSettings) -> None:
        self._settings = settings

    @property
    def from_header(self) -> str:
        return formataddr((self._settings.from_name, self._settings.from_address))

    def send(self, message: MailMessage) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class LogMailer(Mailer):
    """Write messages to the log and keep them in an in-memory outbox."""

    def __init__(self, settings: MailSettings) -> None:
        super().__init__(settings)
        self._outbox: List[MailMessage] = []
        self._lock = threading.Lock()

    @property
    def outbox(self) -> List[MailMessage]:
        with self._lock:
            return list(self._outbox)

    def clear(self) -> None:
        with self._lock:
            self._outbox.clear()

    def send(self, message: MailMessage) -> None:
        with self._lock:
            self._outbox.append(message)
        logger.info(
            "Mail to %s from %s: %s\n%s",
            message.to,
            self.from_header,
            message.subject,
            message.body,
        )


class SMTPMailer(Mailer):
    """Deliver messages through an SMTP relay using STARTTLS."""

    def send(self, message: MailMessage) -> None:
        envelope = EmailMessage()
        envelope["Subject"] = message.subject
        envelope["From"] = self.from_header
        envelope["To"] = message.to
        envelope.set_content(message.body)

        settings = self._settings
        with smtplib.SMTP(settings.host, settings.port, timeout=30) as server:
            if settings.use_tls:
                server.starttls()
            if settings.username and settings.password:
                server.login(settings.username, settings.password)
            server.send_message(envelope)
        logger.info("Sent '%s' to %s via %s:%s", message.subject, message.to, settings.host, settings.port)


def create_mailer(settings: MailSettings) -> Mailer:
    if settings.mailer == "smtp":
        return SMTPMailer(settings)
    if settings.mailer == "log":
        return LogMailer(settings)
    raise ValueError(f"Unsupported mailer '{settings.mailer}'")


def deliver(mailer: Mailer, message: MailMessage) -> bool:
    """Send ``message``, logging transport failures instead of raising them."""

    try:
        mailer.send(message)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to deliver '%s' to %s", message.subject, message.to)
        return False
    return True


def verification_message(app_name: str, to: str, url: str, expire_minutes: int) -> MailMessage:
    body = (
        "Hello,\n\n"
        "Please click the link below to verify your email address.\n\n"
        f"{url}\n\n"
        f"This link will expire in {expire_minutes} minutes.\n\n"
        "If you did not create an account, no further action is required.\n\n"
        f"Regards,\n{app_name}\n"
    )
    return MailMessage(to=to, subject="Verify Email Address", body=body, action_url=url)


def password_reset_message(app_name: str, to: str, url: str, expire_minutes: int) -> MailMessage:
    body = (
        "Hello,\n\n"
        "You are receiving this email because we received a password reset request for your account.\n\n"
        f"{url}\n\n"
        f"This password reset link will expire in {expire_minutes} minutes.\n\n"
        "If you did not request a password reset, no further action is required.\n\n"
        f"Regards,\n{app_name}\n"
    )
    return MailMessage(to=to, subject="Reset Password Notification", body=body, action_url=url)


__all__ = [
    "LogMailer",
    "MailMessage",
    "Mailer",
    "SMTPMailer",
    "create_mailer",
    "deliver",
    "password_reset_message",
    "verification_message",
]
