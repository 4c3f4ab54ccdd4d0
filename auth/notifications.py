"""
auth/notifications.py -- Outbound delivery of account notifications.

The password-reset service hands a ResetPasswordMessage to whichever
notifier was wired in at startup. Notifiers only move bytes; building the
reset URL and deciding whether to send at all happen upstream.

  LoggingNotifier -- default when SMTP_HOST is empty. Logs the recipient only.
  SmtpNotifier    -- plain smtplib delivery, STARTTLS when SMTP_USE_TLS.
"""

from __future__ import annotations

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage

from core.config import Settings

logger = logging.getLogger("batchmates.auth.reset")


@dataclass(frozen=True)
class ResetPasswordMessage:
    recipient: str
    name: str
    url: str
    expire_minutes: int

    @property
    def subject(self) -> str:
        return "Reset Password - Batchmates"

    def body(self) -> str:
        return (
            f"Hello {self.name}!\n\n"
            "You are receiving this email because we received a password reset "
            "request for your account.\n\n"
            f"Reset Password: {self.url}\n\n"
            f"This password reset link will expire in {self.expire_minutes} minutes.\n\n"
            "If you did not request a password reset, no further action is required.\n"
        )


class BaseNotifier(ABC):
    """Abstract base for notification transports."""

    channel_type: str

    @abstractmethod
    def send_reset_link(self, message: ResetPasswordMessage) -> bool:
        """Deliver the reset link. Returns False when delivery failed."""
        raise NotImplementedError


class LoggingNotifier(BaseNotifier):
    channel_type = "log"

    def send_reset_link(self, message: ResetPasswordMessage) -> bool:
        # The URL carries the raw token, so only the recipient is logged.
        logger.info("Password reset link issued for %s (no mail transport configured)", message.recipient)
        return True


class SmtpNotifier(BaseNotifier):
    """Send mail synchronously over SMTP. Failures are logged, never raised."""

    channel_type = "email"

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "no-reply@batchmates.local",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpNotifier":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender=settings.mail_from,
        )

    def send_reset_link(self, message: ResetPasswordMessage) -> bool:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = self.sender
        msg["To"] = message.recipient
        msg.set_content(message.body())
        return self._dispatch(msg)

    def _dispatch(self, msg: EmailMessage) -> bool:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed for '%s': %s", self.username, exc)
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send mail to %s: %s", msg["To"], exc)
            return False
        logger.info("Password reset mail sent to %s", msg["To"])
        return True


def build_notifier(settings: Settings) -> BaseNotifier:
    """SMTP when a host is configured, otherwise log-only."""
    if settings.smtp_host:
        return SmtpNotifier.from_settings(settings)
    return LoggingNotifier()
