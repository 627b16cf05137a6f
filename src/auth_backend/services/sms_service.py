"""SMS service — delivers text messages through the Twilio REST API."""

from __future__ import annotations

import logging

import httpx

from auth_backend.config import Settings
from auth_backend.services.base import BaseDelivery, DeliveryError, Message

logger = logging.getLogger(__name__)


class SmsService(BaseDelivery):
    """Async HTTP wrapper around Twilio's Messages endpoint."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def name(self) -> str:
        return "sms"

    async def deliver(self, destination: str, message: Message) -> None:
        """Send the body of *message* to the phone number *destination*."""
        settings = self._settings
        if not settings.twilio_account_sid or not settings.twilio_auth_token:
            logger.warning("Twilio credentials not set — SMS to %s not sent", destination)
            raise DeliveryError("SMS delivery is not configured")

        url = (
            f"{settings.twilio_base_url.rstrip('/')}/Accounts/"
            f"{settings.twilio_account_sid}/Messages.json"
        )
        payload = {"To": destination, "From": settings.message_from, "Body": message.body}

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    url,
                    data=payload,
                    auth=(settings.twilio_account_sid, settings.twilio_auth_token),
                )
        except httpx.HTTPError as exc:
            logger.exception("SMS request error: %s", exc)
            raise DeliveryError(f"Unable to send SMS to {destination}") from exc

        if resp.status_code not in (200, 201):
            logger.error("SMS send failed: %s %s", resp.status_code, resp.text)
            raise DeliveryError(f"Unable to send SMS to {destination}")

        logger.info("SMS sent to %s", destination)
