"""Payment models: attempts, refunds and gateway configuration."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.bookings.models import PaymentStatusChoices
from shared.domain.value_objects import Money
from shared.infrastructure.fields import EncryptedJSONField


class PaymentProvider(models.TextChoices):
    STRIPE = "STRIPE", _("Stripe")
    PAYPAL = "PAYPAL", _("PayPal")
    CMI = "CMI", _("CMI")
    PAYZONE = "PAYZONE", _("Payzone")
    CASH = "CASH", _("Наличные")


class PaymentQuerySet(models.QuerySet):
    def settled(self):
        return self.filter(status__in=Payment.FINAL_STATUSES)

    def unsettled(self):
        return self.exclude(status__in=Payment.FINAL_STATUSES)


class Payment(models.Model):
    """Попытка оплаты бронирования через одного провайдера."""

    Status = PaymentStatusChoices
    Provider = PaymentProvider

    FINAL_STATUSES = (PaymentStatusChoices.SUCCEEDED, PaymentStatusChoices.REFUNDED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="payments",
    )
    provider = models.CharField(max_length=16, choices=PaymentProvider.choices)
    provider_payment_id = models.CharField(max_length=255, blank=True, db_index=True)
    status = models.CharField(
        max_length=32,
        choices=PaymentStatusChoices.choices,
        default=PaymentStatusChoices.REQUIRES_PAYMENT_METHOD,
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="MAD")
    captured_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    refunded_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    error_code = models.CharField(max_length=64, blank=True)
    error_message = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PaymentQuerySet.as_manager()

    class Meta:
        verbose_name = _("Платёж")
        verbose_name_plural = _("Платежи")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booking", "status"]),
        ]

    def __str__(self) -> str:
        return f"Payment {self.pk} {self.provider} ({self.status})"

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)

    @property
    def is_settled(self) -> bool:
        return self.status in self.FINAL_STATUSES

    def mark_cancelled(self, code: str = "", message: str = "") -> None:
        """Record a failed or abandoned attempt. Settled payments are left alone."""
        if self.is_settled:
            return
        self.status = self.Status.CANCELLED
        self.error_code = code[:64]
        self.error_message = message
        self.save(update_fields=["status", "error_code", "error_message", "updated_at"])

    def mark_refunded(self, amount: Decimal) -> None:
        self.status = self.Status.REFUNDED
        self.refunded_amount = (self.refunded_amount or Decimal("0.00")) + amount
        self.refunded_at = timezone.now()
        self.save(update_fields=["status", "refunded_amount", "refunded_at", "updated_at"])


class Refund(models.Model):
    """Запрос на возврат, отправленный провайдеру."""

    class Status(models.TextChoices):
        PENDING = "PENDING", _("Ожидает")
        SUCCEEDED = "SUCCEEDED", _("Выполнен")
        FAILED = "FAILED", _("Ошибка")

    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name="refunds")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="MAD")
    reason = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    provider_refund_id = models.CharField(max_length=255, blank=True)
    error_message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Возврат")
        verbose_name_plural = _("Возвраты")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Refund {self.pk} for {self.payment_id} ({self.status})"


class PaymentGatewayConfig(models.Model):
    """Настройки платёжного шлюза. Учётные данные хранятся зашифрованными."""

    class GatewayType(models.TextChoices):
        CARD = "CARD", _("Карта")
        WALLET = "WALLET", _("Кошелёк")
        BANK = "BANK", _("Банк")
        CASH = "CASH", _("Наличные")

    key = models.CharField(max_length=16, choices=PaymentProvider.choices, unique=True)
    name = models.CharField(max_length=100)
    type = models.CharField(max_length=16, choices=GatewayType.choices, default=GatewayType.CARD)
    config = EncryptedJSONField(
        default=dict,
        blank=True,
        help_text=_("Учётные данные; значение вида env:NAME читается из окружения."),
    )
    test_mode = models.BooleanField(default=True)
    is_enabled = models.BooleanField(default=False)
    priority = models.PositiveIntegerField(default=100, help_text=_("Порядок при переключении на резервный шлюз."))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Платёжный шлюз")
        verbose_name_plural = _("Платёжные шлюзы")
        ordering = ["priority", "key"]

    def __str__(self) -> str:
        state = "on" if self.is_enabled else "off"
        return f"{self.name} [{self.key}, {state}]"
