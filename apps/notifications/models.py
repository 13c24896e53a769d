"""Notification models.

A Notification stores the channels that were actually honoured for the
user (after preference filtering), not the ones that were requested.
"""

from __future__ import annotations

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Channel(models.TextChoices):
    TOAST = "TOAST", _("Toast")
    EMAIL = "EMAIL", _("Email")
    PUSH = "PUSH", _("Push")


class Priority(models.TextChoices):
    LOW = "LOW", _("Low")
    NORMAL = "NORMAL", _("Normal")
    HIGH = "HIGH", _("High")


class EventType(models.TextChoices):
    GENERAL = "GENERAL", _("General")
    BOOKING_CREATED = "BOOKING_CREATED", _("Booking created")
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED", _("Booking confirmed")
    BOOKING_CANCELLED = "BOOKING_CANCELLED", _("Booking cancelled")
    EXPERIENCE_PUBLISHED = "EXPERIENCE_PUBLISHED", _("Experience published")
    EXPERIENCE_UNPUBLISHED = "EXPERIENCE_UNPUBLISHED", _("Experience unpublished")
    VERIFICATION_APPROVED = "VERIFICATION_APPROVED", _("Verification approved")
    VERIFICATION_REJECTED = "VERIFICATION_REJECTED", _("Verification rejected")


class Notification(models.Model):
    """A message sent to a user about some event."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications"
    )
    title = models.CharField(max_length=255)
    message = models.TextField()
    priority = models.CharField(max_length=8, choices=Priority.choices, default=Priority.NORMAL)
    # Free-form: unknown event types are accepted and treated as always allowed.
    event_type = models.CharField(max_length=64, default=EventType.GENERAL)
    channels = models.JSONField(default=list, blank=True)
    href = models.CharField(max_length=500, blank=True)
    metadata = models.JSONField(null=True, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["user", "read_at"])]

    def __str__(self) -> str:
        return f"Notification to {self.user_id}: {self.title}"

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


class NotificationPreference(models.Model):
    """Per-user opt-in flags, created with defaults on first use."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notification_preference"
    )
    toast_enabled = models.BooleanField(default=True)
    email_enabled = models.BooleanField(default=True)
    push_enabled = models.BooleanField(default=False)

    on_booking_created = models.BooleanField(default=True)
    on_booking_confirmed = models.BooleanField(default=True)
    on_booking_cancelled = models.BooleanField(default=True)
    on_experience_published = models.BooleanField(default=True)
    on_experience_unpublished = models.BooleanField(default=True)
    on_verification_approved = models.BooleanField(default=True)
    on_verification_rejected = models.BooleanField(default=True)

    updated_at = models.DateTimeField(auto_now=True)

    EVENT_FLAGS = {
        EventType.BOOKING_CREATED.value: "on_booking_created",
        EventType.BOOKING_CONFIRMED.value: "on_booking_confirmed",
        EventType.BOOKING_CANCELLED.value: "on_booking_cancelled",
        EventType.EXPERIENCE_PUBLISHED.value: "on_experience_published",
        EventType.EXPERIENCE_UNPUBLISHED.value: "on_experience_unpublished",
        EventType.VERIFICATION_APPROVED.value: "on_verification_approved",
        EventType.VERIFICATION_REJECTED.value: "on_verification_rejected",
    }

    CHANNEL_FLAGS = {
        Channel.TOAST.value: "toast_enabled",
        Channel.EMAIL.value: "email_enabled",
        Channel.PUSH.value: "push_enabled",
    }

    def __str__(self) -> str:
        return f"Notification preferences of {self.user_id}"

    def allows_event(self, event_type: str) -> bool:
        flag = self.EVENT_FLAGS.get(event_type)
        return True if flag is None else bool(getattr(self, flag))

    def allows_channel(self, channel: str) -> bool:
        flag = self.CHANNEL_FLAGS.get(channel)
        return flag is not None and bool(getattr(self, flag))
