"""Push notification providers.

Each provider implements the PushProvider ABC and handles:
- Connecting (and reconnecting) to the push service
- Single-device, multicast and topic delivery
- Topic subscription management
- Classifying provider failures into ErrorClass values

Available providers:
    FirebasePushProvider — Firebase Cloud Messaging via firebase_admin
"""

from src.reminders.providers.base import (
    MulticastResult,
    PushProvider,
    PushProviderError,
    TokenSendResult,
    TopicResult,
)
from src.reminders.providers.firebase import FirebasePushProvider

__all__ = [
    "PushProvider",
    "PushProviderError",
    "MulticastResult",
    "TokenSendResult",
    "TopicResult",
    "FirebasePushProvider",
]
