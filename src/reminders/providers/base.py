"""Base class and result types for push notification providers.

Every provider subclasses PushProvider.  Provider failures are raised as
PushProviderError carrying an ErrorClass so the gateway can tell a stale
device token (clear it) from a transient outage (log and move on) from a
lost connection (re-initialize).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from src.reminders.models import ErrorClass, PushNotification


class PushProviderError(Exception):
    """A classified push provider failure."""

    def __init__(self, message: str, error_class: ErrorClass = ErrorClass.OTHER) -> None:
        super().__init__(message)
        self.error_class = error_class


@dataclass
class TokenSendResult:
    """Per-token outcome inside a multicast send."""

    token: str
    success: bool
    message_id: str | None = None
    error_class: ErrorClass | None = None
    error: str | None = None


@dataclass
class MulticastResult:
    """Provider response to a multi-token send."""

    success_count: int = 0
    failure_count: int = 0
    responses: list[TokenSendResult] = field(default_factory=list)


@dataclass
class TopicResult:
    """Provider response to a topic subscribe/unsubscribe."""

    success_count: int = 0
    failure_count: int = 0
    errors: list[str] = field(default_factory=list)


class PushProvider(ABC):
    """Abstract push provider.

    Subclasses must set ``PROVIDER_ID`` and implement every abstract method.
    ``initialize`` may be called repeatedly; it must be safe to call after a
    previous failure or after a detected disconnect.
    """

    PROVIDER_ID: str = ""

    @abstractmethod
    async def initialize(self) -> None:
        """Connect to the provider.  Raises on failure."""

    @abstractmethod
    async def send(self, token: str, notification: PushNotification) -> str:
        """Send to one device token and return the provider message id."""

    @abstractmethod
    async def send_multicast(
        self, tokens: list[str], notification: PushNotification
    ) -> MulticastResult:
        """Send one notification to many device tokens in a single call."""

    @abstractmethod
    async def send_to_topic(self, topic: str, notification: PushNotification) -> str:
        """Broadcast to every device subscribed to ``topic``."""

    @abstractmethod
    async def subscribe_to_topic(self, tokens: list[str], topic: str) -> TopicResult:
        """Subscribe device tokens to a topic."""

    @abstractmethod
    async def unsubscribe_from_topic(self, tokens: list[str], topic: str) -> TopicResult:
        """Unsubscribe device tokens from a topic."""

    def info(self) -> dict:
        """Provider description for health checks."""
        return {"provider": self.PROVIDER_ID}
