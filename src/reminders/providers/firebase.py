"""Firebase Cloud Messaging provider.

Environment variables (via Settings):
    FIREBASE_PROJECT_ID       — Firebase project the messages are sent from
    FIREBASE_CREDENTIALS_PATH — Service account JSON (Application Default
                                Credentials are used when unset)

The firebase_admin SDK is synchronous; every call is moved to a worker
thread so the event loop keeps serving requests during a daily run.
"""

from __future__ import annotations

import asyncio
import logging

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from src.config import Settings, get_settings
from src.reminders.models import ErrorClass, PushNotification
from src.reminders.providers.base import (
    MulticastResult,
    PushProvider,
    PushProviderError,
    TokenSendResult,
    TopicResult,
)

logger = logging.getLogger("arcular.reminders.providers.firebase")

FIREBASE_APP_NAME = "arcular-push"


def classify_firebase_error(exc: BaseException) -> ErrorClass:
    """Map a firebase_admin exception to an ErrorClass."""
    if isinstance(exc, messaging.UnregisteredError):
        return ErrorClass.NOT_REGISTERED
    if isinstance(exc, messaging.SenderIdMismatchError):
        return ErrorClass.INVALID_TOKEN
    if isinstance(exc, exceptions.InvalidArgumentError):
        return ErrorClass.INVALID_TOKEN
    if isinstance(
        exc,
        (
            messaging.QuotaExceededError,
            exceptions.UnavailableError,
            exceptions.InternalError,
            exceptions.DeadlineExceededError,
            exceptions.ResourceExhaustedError,
        ),
    ):
        return ErrorClass.TRANSIENT
    if isinstance(
        exc,
        (
            messaging.ThirdPartyAuthError,
            exceptions.UnauthenticatedError,
            exceptions.PermissionDeniedError,
        ),
    ):
        return ErrorClass.UNAVAILABLE
    return ErrorClass.OTHER


class FirebasePushProvider(PushProvider):
    """Push provider backed by firebase_admin.messaging."""

    PROVIDER_ID = "fcm"

    def __init__(
        self,
        settings: Settings | None = None,
        android_channel_id: str = "menstrual-reminders",
    ) -> None:
        self._settings = settings or get_settings()
        self._android_channel_id = android_channel_id
        self._app: firebase_admin.App | None = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create (or recreate) the named Firebase app."""
        await asyncio.to_thread(self._initialize_app)

    def _initialize_app(self) -> None:
        try:
            stale = firebase_admin.get_app(FIREBASE_APP_NAME)
            firebase_admin.delete_app(stale)
        except ValueError:
            pass

        path = self._settings.firebase_credentials_path
        cred = credentials.Certificate(path) if path else credentials.ApplicationDefault()
        self._app = firebase_admin.initialize_app(
            cred,
            {"projectId": self._settings.firebase_project_id},
            name=FIREBASE_APP_NAME,
        )
        logger.info(
            "Firebase messaging initialized for project %s (%s credentials)",
            self._settings.firebase_project_id,
            "service account" if path else "default",
        )

    def info(self) -> dict:
        return {
            "provider": self.PROVIDER_ID,
            "project_id": self._settings.firebase_project_id,
            "app": FIREBASE_APP_NAME if self._app else None,
        }

    # ------------------------------------------------------------------
    # Message construction
    # ------------------------------------------------------------------

    def _android(self) -> messaging.AndroidConfig:
        return messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                channel_id=self._android_channel_id,
                priority="high",
                default_sound=True,
                default_vibrate_timings=True,
            ),
        )

    @staticmethod
    def _apns() -> messaging.APNSConfig:
        return messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
        )

    def build_message(
        self,
        notification: PushNotification,
        token: str | None = None,
        topic: str | None = None,
    ) -> messaging.Message:
        return messaging.Message(
            token=token,
            topic=topic,
            notification=messaging.Notification(
                title=notification.title, body=notification.body
            ),
            data=notification.data_bag(),
            android=self._android(),
            apns=self._apns(),
        )

    def build_multicast(
        self, tokens: list[str], notification: PushNotification
    ) -> messaging.MulticastMessage:
        return messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(
                title=notification.title, body=notification.body
            ),
            data=notification.data_bag(),
            android=self._android(),
            apns=self._apns(),
        )

    # ------------------------------------------------------------------
    # PushProvider interface
    # ------------------------------------------------------------------

    def _require_app(self) -> firebase_admin.App:
        if self._app is None:
            raise PushProviderError("Firebase app not initialized", ErrorClass.UNAVAILABLE)
        return self._app

    async def send(self, token: str, notification: PushNotification) -> str:
        app = self._require_app()
        message = self.build_message(notification, token=token)
        try:
            return await asyncio.to_thread(messaging.send, message, app=app)
        except exceptions.FirebaseError as exc:
            raise PushProviderError(str(exc), classify_firebase_error(exc)) from exc

    async def send_multicast(
        self, tokens: list[str], notification: PushNotification
    ) -> MulticastResult:
        app = self._require_app()
        message = self.build_multicast(tokens, notification)
        try:
            batch = await asyncio.to_thread(
                messaging.send_each_for_multicast, message, app=app
            )
        except exceptions.FirebaseError as exc:
            raise PushProviderError(str(exc), classify_firebase_error(exc)) from exc

        responses = []
        for token, resp in zip(tokens, batch.responses):
            if resp.success:
                responses.append(
                    TokenSendResult(token=token, success=True, message_id=resp.message_id)
                )
            else:
                responses.append(
                    TokenSendResult(
                        token=token,
                        success=False,
                        error_class=classify_firebase_error(resp.exception),
                        error=str(resp.exception),
                    )
                )
        return MulticastResult(
            success_count=batch.success_count,
            failure_count=batch.failure_count,
            responses=responses,
        )

    async def send_to_topic(self, topic: str, notification: PushNotification) -> str:
        app = self._require_app()
        message = self.build_message(notification, topic=topic)
        try:
            return await asyncio.to_thread(messaging.send, message, app=app)
        except exceptions.FirebaseError as exc:
            raise PushProviderError(str(exc), classify_firebase_error(exc)) from exc

    async def subscribe_to_topic(self, tokens: list[str], topic: str) -> TopicResult:
        app = self._require_app()
        try:
            resp = await asyncio.to_thread(
                messaging.subscribe_to_topic, tokens, topic, app=app
            )
        except exceptions.FirebaseError as exc:
            raise PushProviderError(str(exc), classify_firebase_error(exc)) from exc
        return TopicResult(
            success_count=resp.success_count,
            failure_count=resp.failure_count,
            errors=[e.reason for e in resp.errors],
        )

    async def unsubscribe_from_topic(self, tokens: list[str], topic: str) -> TopicResult:
        app = self._require_app()
        try:
            resp = await asyncio.to_thread(
                messaging.unsubscribe_from_topic, tokens, topic, app=app
            )
        except exceptions.FirebaseError as exc:
            raise PushProviderError(str(exc), classify_firebase_error(exc)) from exc
        return TopicResult(
            success_count=resp.success_count,
            failure_count=resp.failure_count,
            errors=[e.reason for e in resp.errors],
        )
