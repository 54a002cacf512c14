"""
Notification Service

Outbound email for booking confirmations, reminders and cancellation
notices. Delivery failures are returned as SendResult values, never
raised, so callers can log and retry on their own schedule.
"""

import asyncio
import logging
import random
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Optional

logger = logging.getLogger(__name__)


def mask_email(address: str) -> str:
    """
    Mask an email address for logging.

    Shows: jo***@example.org
    """
    local, _, domain = address.partition("@")
    if not domain:
        return "***"
    return f"{local[:2]}***@{domain}"


@dataclass(frozen=True)
class Attachment:
    """File attached to an outbound email."""

    filename: str
    content: str
    mime_type: str = "text/calendar"
    method: Optional[str] = None  # iTIP method for calendar attachments


@dataclass(frozen=True)
class Notification:
    """One outbound message."""

    to: str
    subject: str
    body: str
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SendResult:
    """Outcome of a send. `error` carries the SendFailure reason."""

    ok: bool
    error: Optional[str] = None
    attempts: int = 1

    @classmethod
    def success(cls, attempts: int = 1) -> "SendResult":
        return cls(ok=True, attempts=attempts)

    @classmethod
    def failure(cls, reason: str, attempts: int = 1) -> "SendResult":
        return cls(ok=False, error=reason, attempts=attempts)


class NotificationService:
    """Base notification sender."""

    async def send(self, notification: Notification) -> SendResult:
        """Send a notification.

        Args:
            notification: Recipient, subject, body and attachments

        Returns:
            SendResult (ok, or failure with reason)
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None


class LoggingNotificationService(NotificationService):
    """Logs notifications instead of sending them. Used when SMTP is not configured."""

    def __init__(self):
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> SendResult:
        self.sent.append(notification)
        logger.info(
            f"Notification (not delivered, SMTP not configured) | "
            f"To: {mask_email(notification.to)} | Subject: {notification.subject}"
        )
        return SendResult.success()


class SmtpNotificationService(NotificationService):
    """
    SMTP email sender.

    Each attempt runs the blocking smtplib client in a worker thread with
    a socket timeout. Failed attempts are retried with exponential
    backoff plus jitter.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: str = "no-reply@example.org",
        use_tls: bool = True,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds

    def _build_message(self, notification: Notification) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = notification.to
        message["Subject"] = notification.subject
        message.set_content(notification.body)

        for attachment in notification.attachments:
            maintype, _, subtype = attachment.mime_type.partition("/")
            params = {"method": attachment.method} if attachment.method else {}
            message.add_attachment(
                attachment.content.encode("utf-8"),
                maintype=maintype,
                subtype=subtype,
                filename=attachment.filename,
                params=params,
            )
        return message

    def _deliver(self, message: EmailMessage) -> None:
        if self.port == 465:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout_seconds)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds)

        with server:
            if self.use_tls and self.port != 465:
                server.starttls(context=ssl.create_default_context())
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)

    async def send(self, notification: Notification) -> SendResult:
        message = self._build_message(notification)
        last_error: Optional[str] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                await asyncio.to_thread(self._deliver, message)
                logger.info(
                    f"Email sent | To: {mask_email(notification.to)} | "
                    f"Subject: {notification.subject} | Attempts: {attempt}"
                )
                return SendResult.success(attempts=attempt)
            except (smtplib.SMTPException, OSError) as e:
                last_error = f"{type(e).__name__}: {e}"
                if attempt < self.max_attempts:
                    delay = self.base_delay_seconds * (2 ** (attempt - 1)) + random.uniform(0, 0.5)
                    logger.warning(
                        f"Email attempt {attempt} failed for {mask_email(notification.to)}: "
                        f"{last_error}. Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

        logger.error(
            f"All {self.max_attempts} attempts failed for {mask_email(notification.to)}: {last_error}"
        )
        return SendResult.failure(last_error or "unknown error", attempts=self.max_attempts)


async def deliver(
    service: NotificationService,
    notification: Notification,
    timeout_seconds: float,
) -> SendResult:
    """
    Send with an overall time bound.

    A timeout or unexpected sender error becomes a failed SendResult.
    """
    try:
        return await asyncio.wait_for(service.send(notification), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            f"Notification to {mask_email(notification.to)} timed out after {timeout_seconds}s"
        )
        return SendResult.failure("timeout")
    except Exception as e:
        logger.error(f"Notification to {mask_email(notification.to)} failed: {e}")
        return SendResult.failure(f"{type(e).__name__}: {e}")
