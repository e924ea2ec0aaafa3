from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence
from typing import Annotated, Protocol

import httpx
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from modqueue_api.db.models import NotificationOutbox
from modqueue_api.settings import Settings, get_settings


def notification_payload(notification: NotificationOutbox) -> dict[str, object]:
    return {
        "schema_version": 1,
        "notification_id": str(notification.id),
        "event_type": notification.event_type,
        "user_id": str(notification.user_id),
        "title": notification.title,
        "body": notification.body,
        "payload": notification.payload or {},
        "created_at": notification.created_at.isoformat(),
    }


class NotificationDispatcher(Protocol):
    async def deliver(self, payload: dict[str, object]) -> bool:
        ...


class NoopNotificationDispatcher:
    async def deliver(self, payload: dict[str, object]) -> bool:
        return False


class LoggingNotificationDispatcher:
    def __init__(self) -> None:
        self._logger = logging.getLogger("modqueue_api.notifications")

    async def deliver(self, payload: dict[str, object]) -> bool:
        self._logger.info(
            "notification_dispatched",
            extra={
                "notification_id": payload["notification_id"],
                "event_type": payload["event_type"],
                "recipient_id": payload["user_id"],
            },
        )
        return True


class WebhookNotificationDispatcher:
    def __init__(self, settings: Settings) -> None:
        if settings.notifications_webhook_url is None:
            raise ValueError("notifications_webhook_url is required for webhook mode")
        self._url = str(settings.notifications_webhook_url)
        self._token = settings.notifications_webhook_token
        self._timeout = float(settings.notifications_webhook_timeout_seconds)
        self._logger = logging.getLogger("modqueue_api.notifications")

    async def deliver(self, payload: dict[str, object]) -> bool:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._token:
            headers["X-Modqueue-Webhook-Token"] = self._token
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError:
            self._logger.exception(
                "notification_webhook_failed",
                extra={
                    "webhook_url": self._url,
                    "notification_id": payload["notification_id"],
                    "event_type": payload["event_type"],
                },
            )
            return False
        return True


async def dispatch_notifications(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    notifications: Sequence[NotificationOutbox],
    *,
    now: dt.datetime,
) -> int:
    """Hand committed outbox rows to the delivery collaborator.

    Rows that are not delivered stay pending for a later retry.
    """
    delivered = 0
    for notification in notifications:
        if notification.dispatched_at is not None:
            continue
        if await dispatcher.deliver(notification_payload(notification)):
            notification.dispatched_at = now
            delivered += 1
    if delivered:
        await db.commit()
    return delivered


async def dispatch_pending_notifications(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    *,
    now: dt.datetime,
    limit: int = 100,
) -> int:
    """Retry outbox rows that were never delivered, oldest first."""
    pending = (
        await db.scalars(
            select(NotificationOutbox)
            .where(NotificationOutbox.dispatched_at.is_(None))
            .order_by(NotificationOutbox.created_at, NotificationOutbox.id)
            .limit(limit)
        )
    ).all()
    return await dispatch_notifications(db, dispatcher, pending, now=now)


_noop_dispatcher = NoopNotificationDispatcher()
_log_dispatcher = LoggingNotificationDispatcher()


def get_notification_dispatcher(
    settings: Settings = Depends(get_settings),
) -> NotificationDispatcher:
    mode = settings.notifications_mode
    if mode == "noop":
        return _noop_dispatcher
    if mode == "webhook":
        return WebhookNotificationDispatcher(settings)
    return _log_dispatcher


NotificationDispatcherDep = Annotated[
    NotificationDispatcher, Depends(get_notification_dispatcher)
]
