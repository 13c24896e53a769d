"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Booking


class BookingSerializer(serializers.ModelSerializer):
    """Представление брони для explorer, организатора и администратора."""

    session_id = serializers.UUIDField(read_only=True)
    experience_id = serializers.UUIDField(read_only=True)
    experience_title = serializers.CharField(source="experience.title", read_only=True)
    session_start_at = serializers.DateTimeField(source="session.start_at", read_only=True)
    current_payment_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "booking_code",
            "status",
            "payment_status",
            "guests",
            "total_price",
            "currency",
            "session_id",
            "experience_id",
            "experience_title",
            "session_start_at",
            "expires_at",
            "notes",
            "cancellation_reason",
            "current_payment_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """Создание брони explorer-ом."""

    experience_id = serializers.UUIDField()
    session_id = serializers.UUIDField()
    guests = serializers.IntegerField(min_value=1)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000, default="")


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class OrganizerStatusSerializer(serializers.Serializer):
    booking_id = serializers.UUIDField()
    status = serializers.ChoiceField(choices=[Booking.Status.CONFIRMED, Booking.Status.CANCELLED])
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")
