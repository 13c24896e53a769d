"""Experience and session models."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.core.exceptions import ValidationError  # type: ignore
from django.core.validators import MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.value_objects import SUPPORTED_CURRENCIES, Money

CURRENCY_CHOICES = [(code, code) for code in SUPPORTED_CURRENCIES]


class Experience(models.Model):
    """Впечатление, которое организатор публикует на маркетплейсе."""

    class Status(models.TextChoices):
        DRAFT = "DRAFT", _("Черновик")
        PUBLISHED = "PUBLISHED", _("Опубликовано")
        UNPUBLISHED = "UNPUBLISHED", _("Снято с публикации")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="experiences",
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    currency = models.CharField(max_length=3, choices=CURRENCY_CHOICES, default="MAD")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Впечатление")
        verbose_name_plural = _("Впечатления")
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["organizer", "status"])]

    def __str__(self) -> str:
        return self.title


class ExperienceSession(models.Model):
    """Сессия впечатления с фиксированной вместимостью."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    experience = models.ForeignKey(
        Experience,
        on_delete=models.CASCADE,
        related_name="sessions",
    )
    start_at = models.DateTimeField()
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)
    price_override = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    capacity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Сессия")
        verbose_name_plural = _("Сессии")
        ordering = ["start_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(capacity__gte=1), name="session_capacity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.experience_id} @ {self.start_at:%Y-%m-%d %H:%M}"

    @property
    def unit_price(self) -> Money:
        """Per-guest price: the session override, else the experience price."""
        amount = self.price_override if self.price_override is not None else self.experience.price
        return Money(amount, self.experience.currency)

    def save(self, *args, **kwargs):  # type: ignore
        if not self._state.adding:
            stored = (
                ExperienceSession.objects.filter(pk=self.pk)
                .values_list("capacity", flat=True)
                .first()
            )
            if stored is not None and stored != self.capacity:
                raise ValidationError(_("Вместимость сессии нельзя изменить после создания."))
        super().save(*args, **kwargs)
