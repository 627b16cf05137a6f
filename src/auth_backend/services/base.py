"""Base delivery — abstract interface every outbound channel implements."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class Message:
    """Value object handed to a delivery channel."""

    subject: str
    body: str


class DeliveryError(Exception):
    """The channel could not hand the message off."""


class BaseDelivery(ABC):
    """Abstract base class for outbound channels (email, SMS).

    Channels only transport; composing the message is the caller's job.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable channel name (used in logs)."""

    @abstractmethod
    async def deliver(self, destination: str, message: Message) -> None:
        """Send *message* to *destination*.

        Raises ``DeliveryError`` when the message could not be handed off.
        """
