"""Ticket models."""

from __future__ import annotations

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Ticket(models.Model):
    """Билет на одно место в подтверждённой брони."""

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="tickets",
    )
    code = models.CharField(max_length=40, unique=True)
    seat_number = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Билет")
        verbose_name_plural = _("Билеты")
        ordering = ["booking", "seat_number"]
        constraints = [
            models.UniqueConstraint(fields=["booking", "seat_number"], name="ticket_unique_seat"),
        ]

    def __str__(self) -> str:
        return self.code
