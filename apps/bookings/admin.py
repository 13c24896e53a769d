"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "booking_code",
        "experience",
        "session",
        "explorer",
        "guests",
        "status",
        "payment_status",
        "total_price",
        "expires_at",
        "created_at",
    )
    list_filter = ("status", "payment_status")
    search_fields = ("booking_code", "experience__title", "explorer__email")
    readonly_fields = (
        "booking_code",
        "total_price",
        "currency",
        "current_payment",
        "side_effects_processed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    )

    def has_delete_permission(self, request, obj=None):  # type: ignore
        return False
