"""Notification gateway: the only path from the reminder pipeline to a push provider.

Responsibilities:
1. Keep the provider connection in an explicit state machine
   (UNINITIALIZED → READY, or FAILED) and lazily (re)initialize it through
   ``ensure_ready()`` before every provider call
2. Resolve device tokens through the user directory
3. Clear stale device tokens when the provider rejects them
4. Report every attempt, success or failure, to an audit hook

No method raises on delivery failure; every operation fails closed and
returns a falsy / zero result instead.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from src.reminders.directory import UserDirectory
from src.reminders.models import DeliveryOutcome, ErrorClass, PushNotification
from src.reminders.providers.base import PushProvider, PushProviderError

logger = logging.getLogger("arcular.reminders.gateway")

# FCM accepts at most 500 tokens per multicast request
MAX_MULTICAST_TOKENS = 500


class GatewayState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


@dataclass
class DeliveryAudit:
    """One audited delivery attempt.

    Attributes:
        target:         'user:<id>', 'topic:<name>' or 'tokens:<count>'.
        target_user_id: Addressed user, when the target is a user.
        kind:           Notification kind.
        success:        Whether the provider accepted the message.
        response:       Provider message id, or the error text.
        error_class:    Failure classification, None on success.
        timestamp:      UTC time of the attempt.
    """

    target: str
    target_user_id: str | None
    kind: str
    success: bool
    response: str | None = None
    error_class: ErrorClass | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


AuditHook = Callable[[DeliveryAudit], "Awaitable[None] | None"]


def log_audit(record: DeliveryAudit) -> None:
    """Default audit hook: one log line per attempt."""
    if record.success:
        logger.info(
            "Push sent to %s (%s): %s", record.target, record.kind, record.response
        )
    elif record.error_class in (
        ErrorClass.NO_TOKEN,
        ErrorClass.INVALID_TOKEN,
        ErrorClass.NOT_REGISTERED,
    ):
        logger.info(
            "Push to %s (%s) skipped/rejected [%s]: %s",
            record.target,
            record.kind,
            record.error_class.value,
            record.response,
        )
    else:
        logger.warning(
            "Push to %s (%s) failed [%s]: %s",
            record.target,
            record.kind,
            record.error_class.value if record.error_class else "unknown",
            record.response,
        )


@dataclass
class MulticastSummary:
    success_count: int = 0
    total_attempted: int = 0


class NotificationGateway:
    """Deliver notifications through a PushProvider.

    Usage::

        gateway = NotificationGateway(FirebasePushProvider(), PostgresUserDirectory())
        delivered = await gateway.send_to_user("uid-123", notification)
        print(gateway.status())
    """

    def __init__(
        self,
        provider: PushProvider,
        directory: UserDirectory,
        audit_hook: AuditHook | None = None,
        multicast_batch_size: int = MAX_MULTICAST_TOKENS,
    ) -> None:
        """Construct the gateway.  Never touches the provider.

        Args:
            provider:             Push provider implementation.
            directory:            Device token lookups and stale-token removal.
            audit_hook:           Sync or async callable receiving DeliveryAudit
                                  records.  Defaults to logging.
            multicast_batch_size: Tokens per provider multicast call (≤ 500).
        """
        self._provider = provider
        self._directory = directory
        self._audit_hook = audit_hook or log_audit
        self._batch_size = max(1, min(multicast_batch_size, MAX_MULTICAST_TOKENS))
        self._state = GatewayState.UNINITIALIZED
        self._last_error: str | None = None
        self._initialized_at: datetime | None = None
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Connection state
    # ------------------------------------------------------------------

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is GatewayState.READY

    async def ensure_ready(self) -> bool:
        """Initialize the provider unless already READY.

        Returns:
            True if the gateway is READY afterwards.
        """
        if self._state is GatewayState.READY:
            return True

        async with self._init_lock:
            if self._state is GatewayState.READY:
                return True
            try:
                await self._provider.initialize()
            except Exception as exc:
                self._state = GatewayState.FAILED
                self._last_error = str(exc)
                logger.warning("Push provider initialization failed: %s", exc)
                return False
            self._state = GatewayState.READY
            self._last_error = None
            self._initialized_at = datetime.now(timezone.utc)
            logger.info("Push provider %s ready", self._provider.PROVIDER_ID)
            return True

    def mark_disconnected(self, reason: str) -> None:
        """Force re-initialization on the next call."""
        if self._state is GatewayState.READY:
            logger.warning("Push provider disconnected: %s", reason)
        self._state = GatewayState.FAILED
        self._last_error = reason

    async def wait_until_ready(self, timeout: float, interval: float = 1.0) -> bool:
        """Retry ``ensure_ready`` until it succeeds or ``timeout`` elapses."""
        deadline = time.monotonic() + timeout
        while True:
            if await self.ensure_ready():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(interval, remaining))

    def status(self) -> dict:
        return {
            "ready": self.is_ready,
            "state": self._state.value,
            "provider": self._provider.info(),
            "last_error": self._last_error,
            "initialized_at": (
                self._initialized_at.isoformat() if self._initialized_at else None
            ),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _audit(self, record: DeliveryAudit) -> None:
        try:
            result = self._audit_hook(record)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("Audit hook failed for %s: %s", record.target, exc)

    async def _handle_stale_token(self, user_id: str, token: str) -> None:
        try:
            cleared = await self._directory.clear_device_token(user_id, token)
        except Exception as exc:
            logger.warning("Could not clear stale token for user %s: %s", user_id, exc)
            return
        if cleared:
            logger.info("Cleared stale device token for user %s", user_id)

    def _on_provider_error(self, exc: Exception) -> PushProviderError:
        """Classify a provider failure; unclassified exceptions become OTHER."""
        if not isinstance(exc, PushProviderError):
            logger.warning(
                "Unclassified %s from push provider: %s", type(exc).__name__, exc
            )
            exc = PushProviderError(f"{type(exc).__name__}: {exc}", ErrorClass.OTHER)
        if exc.error_class is ErrorClass.UNAVAILABLE:
            self.mark_disconnected(str(exc))
        return exc

    # ------------------------------------------------------------------
    # Single user
    # ------------------------------------------------------------------

    async def deliver(self, user_id: str, notification: PushNotification) -> DeliveryOutcome:
        """Send to one user and return a classified outcome."""
        target = f"user:{user_id}"

        token = await self._directory.get_device_token(user_id)
        if not token:
            outcome = DeliveryOutcome(
                kind=notification.kind,
                success=False,
                error_class=ErrorClass.NO_TOKEN,
                error="no device token",
            )
            await self._audit(
                DeliveryAudit(target, user_id, notification.kind, False, outcome.error, ErrorClass.NO_TOKEN)
            )
            return outcome

        if not await self.ensure_ready():
            outcome = DeliveryOutcome(
                kind=notification.kind,
                success=False,
                error_class=ErrorClass.UNAVAILABLE,
                error=self._last_error or "push provider unavailable",
            )
            await self._audit(
                DeliveryAudit(target, user_id, notification.kind, False, outcome.error, ErrorClass.UNAVAILABLE)
            )
            return outcome

        try:
            message_id = await self._provider.send(token, notification)
        except Exception as raw:
            exc = self._on_provider_error(raw)
            if exc.error_class.is_stale_token:
                await self._handle_stale_token(user_id, token)
            await self._audit(
                DeliveryAudit(target, user_id, notification.kind, False, str(exc), exc.error_class)
            )
            return DeliveryOutcome(
                kind=notification.kind,
                success=False,
                error_class=exc.error_class,
                error=str(exc),
            )

        await self._audit(DeliveryAudit(target, user_id, notification.kind, True, message_id))
        return DeliveryOutcome(kind=notification.kind, success=True, message_id=message_id)

    async def send_to_user(self, user_id: str, notification: PushNotification) -> bool:
        """Send to one user.  Returns True only if the provider accepted it."""
        outcome = await self.deliver(user_id, notification)
        return outcome.success

    # ------------------------------------------------------------------
    # Many users
    # ------------------------------------------------------------------

    async def send_to_many(
        self, user_ids: list[str], notification: PushNotification
    ) -> MulticastSummary:
        """Send one notification to many users.

        Tokens are resolved first; with none the provider is never called.
        Per-target failures are audited individually and never abort the batch.
        """
        tokens_by_user = await self._directory.get_device_tokens(list(user_ids))
        if not tokens_by_user:
            logger.info("No valid device tokens among %d user(s)", len(user_ids))
            return MulticastSummary()

        if not await self.ensure_ready():
            for user_id in tokens_by_user:
                await self._audit(
                    DeliveryAudit(
                        f"user:{user_id}", user_id, notification.kind, False,
                        self._last_error, ErrorClass.UNAVAILABLE,
                    )
                )
            return MulticastSummary()

        # Several users may share one device; each token is sent once but
        # counted and audited for every user holding it.
        users_by_token: dict[str, list[str]] = {}
        for uid, token in tokens_by_user.items():
            users_by_token.setdefault(token, []).append(uid)
        tokens = list(users_by_token)
        summary = MulticastSummary()

        for i in range(0, len(tokens), self._batch_size):
            batch = tokens[i:i + self._batch_size]
            batch_users = sum(len(users_by_token[t]) for t in batch)
            summary.total_attempted += batch_users
            try:
                result = await self._provider.send_multicast(batch, notification)
            except Exception as raw:
                exc = self._on_provider_error(raw)
                await self._audit(
                    DeliveryAudit(
                        f"tokens:{len(batch)}", None, notification.kind, False,
                        str(exc), exc.error_class,
                    )
                )
                continue

            for resp in result.responses:
                for user_id in users_by_token.get(resp.token, []):
                    if resp.success:
                        summary.success_count += 1
                    elif resp.error_class and resp.error_class.is_stale_token:
                        await self._handle_stale_token(user_id, resp.token)
                    await self._audit(
                        DeliveryAudit(
                            f"user:{user_id}",
                            user_id,
                            notification.kind,
                            resp.success,
                            resp.message_id if resp.success else resp.error,
                            resp.error_class,
                        )
                    )

        logger.info(
            "Multicast sent: %d/%d successful",
            summary.success_count,
            summary.total_attempted,
        )
        return summary

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def send_to_topic(self, topic: str, notification: PushNotification) -> bool:
        target = f"topic:{topic}"
        if not await self.ensure_ready():
            await self._audit(
                DeliveryAudit(target, None, notification.kind, False, self._last_error, ErrorClass.UNAVAILABLE)
            )
            return False
        try:
            message_id = await self._provider.send_to_topic(topic, notification)
        except Exception as raw:
            exc = self._on_provider_error(raw)
            await self._audit(
                DeliveryAudit(target, None, notification.kind, False, str(exc), exc.error_class)
            )
            return False
        await self._audit(DeliveryAudit(target, None, notification.kind, True, message_id))
        return True

    async def subscribe(self, tokens: list[str], topic: str) -> bool:
        return await self._manage_topic(tokens, topic, subscribe=True)

    async def unsubscribe(self, tokens: list[str], topic: str) -> bool:
        return await self._manage_topic(tokens, topic, subscribe=False)

    async def _manage_topic(self, tokens: list[str], topic: str, subscribe: bool) -> bool:
        action = "subscribe" if subscribe else "unsubscribe"
        target = f"topic:{topic}"
        if not tokens:
            return False
        if not await self.ensure_ready():
            await self._audit(
                DeliveryAudit(target, None, action, False, self._last_error, ErrorClass.UNAVAILABLE)
            )
            return False
        try:
            if subscribe:
                result = await self._provider.subscribe_to_topic(tokens, topic)
            else:
                result = await self._provider.unsubscribe_from_topic(tokens, topic)
        except Exception as raw:
            exc = self._on_provider_error(raw)
            await self._audit(
                DeliveryAudit(target, None, action, False, str(exc), exc.error_class)
            )
            return False

        ok = result.success_count > 0
        await self._audit(
            DeliveryAudit(
                target, None, action, ok,
                f"{result.success_count}/{len(tokens)} tokens",
                None if ok else ErrorClass.OTHER,
            )
        )
        return ok
