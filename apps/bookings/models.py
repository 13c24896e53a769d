"""Booking persistence models."""

from __future__ import annotations

import secrets
import uuid
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.core.validators import MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.bookings.domain.entities import BookingState, BookingStatus, PaymentStatus


class PaymentStatusChoices(models.TextChoices):
    REQUIRES_PAYMENT_METHOD = "REQUIRES_PAYMENT_METHOD", _("Ожидает способ оплаты")
    REQUIRES_ACTION = "REQUIRES_ACTION", _("Требуется действие")
    PROCESSING = "PROCESSING", _("В обработке")
    SUCCEEDED = "SUCCEEDED", _("Оплачено")
    CANCELLED = "CANCELLED", _("Отменено")
    REFUNDED = "REFUNDED", _("Возврат")


class BookingQuerySet(models.QuerySet):
    def holding_capacity(self, now=None):
        """CONFIRMED bookings plus PENDING ones whose hold has not expired."""
        now = now or timezone.now()
        return self.filter(
            models.Q(status=Booking.Status.CONFIRMED)
            | models.Q(status=Booking.Status.PENDING, expires_at__gt=now)
        )

    def expired_holds(self, now=None):
        now = now or timezone.now()
        return self.filter(status=Booking.Status.PENDING, expires_at__lte=now)


class Booking(models.Model):
    """Бронирование мест на сессии впечатления."""

    class Status(models.TextChoices):
        PENDING = "PENDING", _("Ожидает оплаты")
        CONFIRMED = "CONFIRMED", _("Подтверждено")
        CANCELLED = "CANCELLED", _("Отменено")

    PaymentStatus = PaymentStatusChoices

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking_code = models.CharField(max_length=12, unique=True, editable=False)
    explorer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    experience = models.ForeignKey(
        "experiences.Experience",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    session = models.ForeignKey(
        "experiences.ExperienceSession",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    guests = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=32,
        choices=PaymentStatusChoices.choices,
        null=True,
        blank=True,
    )
    current_payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="MAD")
    notes = models.TextField(blank=True)
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("Удержание мест для PENDING брони; после истечения места освобождаются."),
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    side_effects_processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("Момент, когда пайплайн подтверждения выполнился для брони."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        verbose_name = _("Бронирование")
        verbose_name_plural = _("Бронирования")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(guests__gte=1), name="booking_guests_positive"),
        ]
        indexes = [
            models.Index(fields=["session", "status"]),
            models.Index(fields=["status", "expires_at"]),
            models.Index(fields=["explorer", "experience", "status"]),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.booking_code} ({self.status})"

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding and not self.booking_code:
            self.booking_code = self.generate_booking_code()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_booking_code() -> str:
        return secrets.token_hex(4).upper()

    @property
    def is_hold_expired(self) -> bool:
        return bool(
            self.status == self.Status.PENDING
            and self.expires_at
            and self.expires_at <= timezone.now()
        )

    # --- Domain mapping ---------------------------------------------------
    def to_domain(self) -> BookingState:
        experience = self.experience
        return BookingState(
            id=self.id,
            session_id=self.session_id,
            experience_id=self.experience_id,
            experience_title=experience.title,
            explorer_id=self.explorer_id,
            organizer_id=experience.organizer_id,
            guests=self.guests,
            status=BookingStatus(self.status),
            payment_status=PaymentStatus(self.payment_status) if self.payment_status else None,
            expires_at=self.expires_at,
            cancellation_reason=self.cancellation_reason,
        )

    def apply_domain(self, state: BookingState) -> list[str]:
        """Copy the aggregate back onto the row and save the changed fields."""
        changed: list[str] = []
        new_values = {
            "status": state.status.value,
            "payment_status": state.payment_status.value if state.payment_status else None,
            "expires_at": state.expires_at,
            "cancellation_reason": state.cancellation_reason,
        }
        for field_name, value in new_values.items():
            if getattr(self, field_name) != value:
                setattr(self, field_name, value)
                changed.append(field_name)
        if "status" in changed and state.status == BookingStatus.CANCELLED:
            self.cancelled_at = timezone.now()
            changed.append("cancelled_at")
        if changed:
            self.save(update_fields=[*changed, "updated_at"])
        return changed
