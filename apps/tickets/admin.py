from django.contrib import admin

from .models import Ticket


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = ("code", "booking", "seat_number", "created_at")
    search_fields = ("code", "booking__booking_code")
