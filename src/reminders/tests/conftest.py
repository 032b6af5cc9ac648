"""Shared fixtures and in-memory fakes for reminder pipeline tests."""

from __future__ import annotations

from datetime import date

import pytest

from src.reminders.config_loader import ReminderConfig, load_reminder_config
from src.reminders.directory import DirectoryError, UserDirectory
from src.reminders.evaluator import ReminderEvaluator
from src.reminders.gateway import DeliveryAudit, NotificationGateway
from src.reminders.models import (
    CycleProfile,
    EligibleUser,
    ErrorClass,
    NotificationPreference,
    PushNotification,
    ReminderFlags,
)
from src.reminders.providers.base import (
    MulticastResult,
    PushProvider,
    PushProviderError,
    TokenSendResult,
    TopicResult,
)

# Canonical test user and dates
TEST_USER_ID = "uid-test-0001"
TEST_TOKEN = "fcm-token-0001"
TEST_PERIOD_START = date(2024, 1, 1)
TEST_NEXT_PERIOD = date(2024, 1, 29)  # start + 28
TEST_OVULATION = date(2024, 1, 15)    # start + 14
TEST_WINDOW_START = date(2024, 1, 13)  # ovulation - 2


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_profile(
    user_id: str = TEST_USER_ID,
    last_period_start: date | None = TEST_PERIOD_START,
    cycle_length: int = 28,
    next_period: bool = True,
    ovulation: bool = True,
    fertile_window: bool = True,
) -> CycleProfile:
    return CycleProfile(
        user_id=user_id,
        last_period_start=last_period_start,
        cycle_length_days=cycle_length,
        reminder_flags=ReminderFlags(
            next_period=next_period, ovulation=ovulation, fertile_window=fertile_window
        ),
    )


def make_prefs(token: str | None = TEST_TOKEN, **kwargs) -> NotificationPreference:
    return NotificationPreference(device_token=token, **kwargs)


def make_user(user_id: str = TEST_USER_ID, token: str | None = None, **profile_kwargs) -> EligibleUser:
    return EligibleUser(
        user_id=user_id,
        profile=make_profile(user_id=user_id, **profile_kwargs),
        preferences=make_prefs(token if token is not None else f"token-{user_id}"),
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeDirectory(UserDirectory):
    """In-memory UserDirectory."""

    def __init__(self, users: list[EligibleUser] | None = None) -> None:
        self.users = list(users or [])
        self.tokens: dict[str, str] = {
            u.user_id: u.preferences.device_token
            for u in self.users
            if u.preferences.device_token
        }
        self.fail_listing = False
        self.cleared: list[tuple[str, str]] = []
        self.preference_updates: list[dict] = []

    async def find_eligible_users(self) -> list[EligibleUser]:
        if self.fail_listing:
            raise DirectoryError("database unreachable")
        return list(self.users)

    async def get_device_token(self, user_id: str) -> str | None:
        return self.tokens.get(user_id)

    async def get_device_tokens(self, user_ids: list[str]) -> dict[str, str]:
        return {uid: self.tokens[uid] for uid in user_ids if uid in self.tokens}

    async def get_cycle_profile(self, user_id: str) -> CycleProfile | None:
        for u in self.users:
            if u.user_id == user_id:
                return u.profile
        return None

    async def update_device_token(self, user_id: str, token: str | None) -> bool:
        if token is None:
            self.tokens.pop(user_id, None)
        else:
            self.tokens[user_id] = token
        return True

    async def clear_device_token(self, user_id: str, stale_token: str) -> bool:
        self.cleared.append((user_id, stale_token))
        if self.tokens.get(user_id) != stale_token:
            return False
        del self.tokens[user_id]
        return True

    async def update_notification_preferences(self, user_id: str, **kwargs) -> bool:
        self.preference_updates.append({"user_id": user_id, **kwargs})
        return True


class FakePushProvider(PushProvider):
    """Records every call; failures are scripted per token."""

    PROVIDER_ID = "fake"

    def __init__(self) -> None:
        self.init_calls = 0
        self.init_error: Exception | None = None
        self.sent: list[tuple[str, PushNotification]] = []
        self.multicast_calls: list[list[str]] = []
        self.topic_sends: list[str] = []
        self.subscriptions: list[tuple[str, list[str], str]] = []
        self.token_errors: dict[str, ErrorClass] = {}
        # One-shot raw exceptions keyed by method name
        self.raises: dict[str, Exception] = {}

    @property
    def call_count(self) -> int:
        return (
            len(self.sent)
            + len(self.multicast_calls)
            + len(self.topic_sends)
            + len(self.subscriptions)
        )

    def _raise_scripted(self, method: str) -> None:
        exc = self.raises.pop(method, None)
        if exc is not None:
            raise exc

    async def initialize(self) -> None:
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error

    async def send(self, token: str, notification: PushNotification) -> str:
        self.sent.append((token, notification))
        self._raise_scripted("send")
        if token in self.token_errors:
            raise PushProviderError(f"rejected {token}", self.token_errors[token])
        return f"msg-{len(self.sent)}"

    async def send_multicast(
        self, tokens: list[str], notification: PushNotification
    ) -> MulticastResult:
        self.multicast_calls.append(list(tokens))
        self._raise_scripted("send_multicast")
        responses = []
        for token in tokens:
            if token in self.token_errors:
                responses.append(
                    TokenSendResult(token, False, error_class=self.token_errors[token], error="rejected")
                )
            else:
                responses.append(TokenSendResult(token, True, message_id=f"msg-{token}"))
        ok = sum(1 for r in responses if r.success)
        return MulticastResult(ok, len(tokens) - ok, responses)

    async def send_to_topic(self, topic: str, notification: PushNotification) -> str:
        self.topic_sends.append(topic)
        self._raise_scripted("send_to_topic")
        return f"topic-msg-{topic}"

    async def subscribe_to_topic(self, tokens: list[str], topic: str) -> TopicResult:
        self.subscriptions.append(("subscribe", list(tokens), topic))
        self._raise_scripted("subscribe_to_topic")
        return TopicResult(success_count=len(tokens))

    async def unsubscribe_from_topic(self, tokens: list[str], topic: str) -> TopicResult:
        self.subscriptions.append(("unsubscribe", list(tokens), topic))
        return TopicResult(success_count=len(tokens))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def reminder_config() -> ReminderConfig:
    """Load the real reminder config for tests."""
    return load_reminder_config()


@pytest.fixture
def evaluator(reminder_config: ReminderConfig) -> ReminderEvaluator:
    return ReminderEvaluator(reminder_config)


@pytest.fixture
def provider() -> FakePushProvider:
    return FakePushProvider()


@pytest.fixture
def audits() -> list[DeliveryAudit]:
    return []


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory([make_user(TEST_USER_ID, token=TEST_TOKEN)])


@pytest.fixture
def gateway(
    provider: FakePushProvider, directory: FakeDirectory, audits: list[DeliveryAudit]
) -> NotificationGateway:
    return NotificationGateway(provider, directory, audit_hook=audits.append)


@pytest.fixture
def notification() -> PushNotification:
    return PushNotification(title="Hello", body="World", kind="general")
