from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum as PyEnum
from typing import Any, Iterable, Protocol

import httpx

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


class NotificationEvent(str, PyEnum):
    booking_confirmed = "booking-confirmed"
    booking_cancelled = "booking-cancelled"
    class_cancelled = "class-cancelled"
    waitlist_spot_opened = "waitlist-spot-opened"
    payment_confirmed = "payment-confirmed"
    membership_renewed = "membership-renewed"


@dataclass(slots=True)
class Notification:
    member_id: int
    event_type: NotificationEvent
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def notify(
        self, member_id: int, event_type: NotificationEvent, payload: dict[str, Any]
    ) -> None: ...


class LoggingNotificationDispatcher:
    """Records notifications in the application log only."""

    def notify(
        self, member_id: int, event_type: NotificationEvent, payload: dict[str, Any]
    ) -> None:
        logger.info(
            "Notification",
            extra={"member_id": member_id, "event_type": event_type.value, "payload": payload},
        )


class HttpNotificationDispatcher:
    """Hands notifications to the mail service over a JSON webhook."""

    def __init__(self, url: str, timeout: float = 10) -> None:
        self.url = url
        self.timeout = timeout

    def notify(
        self, member_id: int, event_type: NotificationEvent, payload: dict[str, Any]
    ) -> None:
        with httpx.Client(timeout=self.timeout) as client:
            try:
                response = client.post(
                    self.url,
                    json={
                        "member_id": member_id,
                        "event_type": event_type.value,
                        "payload": payload,
                    },
                )
                response.raise_for_status()
            except httpx.HTTPError:
                logger.exception(
                    "Failed to deliver notification",
                    extra={"member_id": member_id, "event_type": event_type.value},
                )


def get_dispatcher(settings: Settings | None = None) -> NotificationDispatcher:
    settings = settings or get_settings()
    if settings.notification_webhook_url:
        return HttpNotificationDispatcher(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotificationDispatcher()


def dispatch(
    dispatcher: NotificationDispatcher | None, notifications: Iterable[Notification]
) -> None:
    """Send notifications after the ledger change has been committed.

    Delivery is fire-and-forget: a failing dispatcher is logged and the
    remaining notifications are still attempted.
    """
    dispatcher = dispatcher or get_dispatcher()
    for notification in notifications:
        try:
            dispatcher.notify(
                notification.member_id, notification.event_type, notification.payload
            )
        except Exception:
            logger.exception(
                "Notification dispatcher failed",
                extra={
                    "member_id": notification.member_id,
                    "event_type": notification.event_type.value,
                },
            )


__all__ = [
    "NotificationEvent",
    "Notification",
    "NotificationDispatcher",
    "LoggingNotificationDispatcher",
    "HttpNotificationDispatcher",
    "get_dispatcher",
    "dispatch",
]
