"""Serializers for the payments API."""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers  # type: ignore

from .models import Payment, PaymentProvider, Refund


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "booking",
            "provider",
            "provider_payment_id",
            "status",
            "amount",
            "currency",
            "captured_at",
            "refunded_at",
            "refunded_amount",
            "error_code",
            "error_message",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class RefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = Refund
        fields = ["id", "payment", "amount", "currency", "reason", "status", "provider_refund_id", "created_at"]
        read_only_fields = fields


class CheckoutSerializer(serializers.Serializer):
    """Запрос на оплату PENDING брони."""

    booking_id = serializers.UUIDField()
    success_url = serializers.URLField(max_length=2000)
    cancel_url = serializers.URLField(max_length=2000)
    provider = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_provider(self, value):
        if not value:
            return None
        value = value.upper()
        if value not in PaymentProvider.values:
            raise serializers.ValidationError(f"Unsupported payment provider: {value}")
        return value


class RefundRequestSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField()
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
        required=False,
        allow_null=True,
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)


class PayPalCaptureSerializer(serializers.Serializer):
    orderId = serializers.CharField(max_length=255)
    bookingId = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    paymentId = serializers.CharField(required=False, allow_blank=True, allow_null=True)
