"""Email service — sends transactional emails via async SMTP."""

from __future__ import annotations

import logging
from email.message import EmailMessage

import aiosmtplib

from auth_backend.config import Settings
from auth_backend.services.base import BaseDelivery, DeliveryError, Message

logger = logging.getLogger(__name__)


class EmailService(BaseDelivery):
    """Sends transactional emails using the configured SMTP server."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def name(self) -> str:
        return "email"

    async def deliver(self, destination: str, message: Message) -> None:
        """Send *message* to the email address *destination*."""
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = self._settings.email_from
        msg["To"] = destination
        msg.set_content(message.body)

        logger.info("Sending email %r to %s", message.subject, destination)

        # Implicit TLS on 465, STARTTLS everywhere else
        implicit_tls = self._settings.smtp_port == 465
        try:
            await aiosmtplib.send(
                msg,
                hostname=self._settings.smtp_host,
                port=self._settings.smtp_port,
                username=self._settings.smtp_username or None,
                password=self._settings.smtp_password or None,
                use_tls=implicit_tls,
                start_tls=not implicit_tls,
            )
        except aiosmtplib.SMTPException as exc:
            logger.exception("Email to %s failed", destination)
            raise DeliveryError(f"Unable to send email to {destination}") from exc

        logger.info("Email sent to %s", destination)
