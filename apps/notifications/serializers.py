"""Serializers for notifications."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Notification, NotificationPreference


class NotificationSerializer(serializers.ModelSerializer):
    eventType = serializers.CharField(source="event_type", read_only=True)
    readAt = serializers.DateTimeField(source="read_at", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Notification
        fields = ["id", "title", "message", "priority", "eventType", "channels", "href", "metadata", "readAt", "createdAt"]
        read_only_fields = fields


class MarkReadSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False, max_length=500)


class NotificationPreferenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationPreference
        exclude = ["id", "user"]
        read_only_fields = ["updated_at"]
