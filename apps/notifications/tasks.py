"""Celery tasks for notifications."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from .models import Notification
from .services import render_notification_email, send_email_notification

logger = logging.getLogger(__name__)


@shared_task(name="notifications.send_notification_email")
def send_notification_email(notification_id: int) -> bool:
    """Письмо по уведомлению. Ошибки логируются и не пробрасываются."""
    notification = Notification.objects.select_related("user").filter(pk=notification_id).first()
    if notification is None:
        logger.error(f"Notification {notification_id} not found for email delivery")
        return False
    if not notification.user.email:
        logger.warning(f"User {notification.user_id} has no email, skipping notification {notification_id}")
        return False
    return send_email_notification(
        recipient_email=notification.user.email,
        subject=notification.title,
        html_message=render_notification_email(notification),
    )
