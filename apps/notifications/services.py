"""Notification fan-out services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore
from django.db import transaction  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.html import escape, strip_tags  # type: ignore

from .broker import NotificationBroker, get_notification_broker
from .models import Channel, EventType, Notification, NotificationPreference, Priority

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


@dataclass
class NotificationPage:
    items: List[Notification]
    unread_count: int


def get_or_create_preferences(user_id) -> NotificationPreference:
    preference, created = NotificationPreference.objects.get_or_create(user_id=user_id)
    if created:
        logger.debug(f"Created default notification preferences for user {user_id}")
    return preference


def effective_channels(preference: NotificationPreference, event_type: str, requested: Iterable[str]) -> List[str]:
    """Requested channels the user accepts for this event type, in canonical order."""
    if not preference.allows_event(event_type):
        return []
    wanted = set(requested)
    return [channel for channel in Channel.values if channel in wanted and preference.allows_channel(channel)]


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.pk,
        "title": notification.title,
        "message": notification.message,
        "priority": notification.priority,
        "eventType": notification.event_type,
        "channels": list(notification.channels),
        "href": notification.href or None,
        "metadata": notification.metadata,
        "readAt": notification.read_at.isoformat() if notification.read_at else None,
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
    }


def _publish(broker: NotificationBroker, user_id, message: dict[str, Any]) -> None:
    try:
        broker.publish(user_id, message)
    except Exception as e:
        logger.error(f"Failed to publish live notification for user {user_id}: {e}", exc_info=True)


def _queue_email(notification_id: int) -> None:
    from .tasks import send_notification_email

    try:
        send_notification_email.delay(notification_id)
    except Exception as e:
        logger.error(f"Failed to queue notification email {notification_id}: {e}", exc_info=True)


def create_notification(
    user_id,
    title: str,
    message: str,
    *,
    priority: str = Priority.NORMAL,
    event_type: str = EventType.GENERAL,
    channels: Optional[Sequence[str]] = None,
    href: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    broker: Optional[NotificationBroker] = None,
) -> Notification:
    """
    Создаёт уведомление с учётом настроек пользователя.

    Сохраняются только реально разрешённые каналы. После коммита запись
    публикуется в топик пользователя, а при наличии EMAIL письмо уходит
    через Celery (ошибки только логируются).
    """
    requested = list(channels) if channels is not None else [Channel.TOAST]
    unknown = [channel for channel in requested if channel not in Channel.values]
    if unknown:
        raise ValueError(f"Unknown notification channels: {unknown}")

    preference = get_or_create_preferences(user_id)
    delivered = effective_channels(preference, str(event_type), requested)

    notification = Notification.objects.create(
        user_id=user_id,
        title=title,
        message=message,
        priority=priority,
        event_type=str(event_type),
        channels=delivered,
        href=href or "",
        metadata=metadata,
    )

    if delivered:
        live_broker = broker or get_notification_broker()
        payload = serialize_notification(notification)
        transaction.on_commit(lambda: _publish(live_broker, user_id, {"type": "notification", "data": payload}))
    if Channel.EMAIL in delivered:
        transaction.on_commit(lambda: _queue_email(notification.pk))

    logger.info(
        f"Notification {notification.pk} for user {user_id} ({event_type}), channels={delivered}"
    )
    return notification


def list_notifications(user_id, limit: Optional[int] = DEFAULT_LIST_LIMIT) -> NotificationPage:
    try:
        limit = int(limit) if limit is not None else DEFAULT_LIST_LIMIT
    except (TypeError, ValueError):
        limit = DEFAULT_LIST_LIMIT
    limit = max(1, min(limit, MAX_LIST_LIMIT))

    queryset = Notification.objects.filter(user_id=user_id)
    items = list(queryset.order_by("-created_at", "-id")[:limit])
    unread = queryset.filter(read_at__isnull=True).count()
    return NotificationPage(items=items, unread_count=unread)


def mark_notifications_read(
    user_id,
    ids: Iterable[int],
    *,
    broker: Optional[NotificationBroker] = None,
) -> int:
    """Bulk mark as read. Already-read and foreign ids are ignored."""
    ids = [pk for pk in ids if pk is not None]
    if not ids:
        return 0

    now = timezone.now()
    updated = Notification.objects.filter(
        user_id=user_id, pk__in=ids, read_at__isnull=True
    ).update(read_at=now)

    if updated:
        live_broker = broker or get_notification_broker()
        message = {"type": "read", "data": {"ids": list(ids), "readAt": now.isoformat()}}
        transaction.on_commit(lambda: _publish(live_broker, user_id, message))
    return updated


# ============================================================================
# EMAIL
# ============================================================================

def render_notification_email(notification: Notification) -> str:
    link = ""
    if notification.href:
        base_url = getattr(settings, "APP_URL", "").rstrip("/")
        url = notification.href if notification.href.startswith("http") else f"{base_url}{notification.href}"
        link = f'<p><a href="{escape(url)}">Open</a></p>'
    return (
        "<html><body>"
        f"<h2>{escape(notification.title)}</h2>"
        f"<p>{escape(notification.message)}</p>"
        f"{link}"
        "</body></html>"
    )


def send_email_notification(recipient_email: str, subject: str, html_message: str) -> bool:
    """
    Отправка email уведомления.

    Returns:
        bool: True если письмо отправлено успешно
    """
    try:
        send_mail(
            subject=subject,
            message=strip_tags(html_message),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient_email],
            html_message=html_message,
            fail_silently=False,
        )
        logger.info(f"Email sent successfully to {recipient_email}: {subject}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}", exc_info=True)
        return False
