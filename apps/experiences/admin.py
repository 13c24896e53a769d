"""Admin registration for experiences."""

from __future__ import annotations

from django.contrib import admin

from .models import Experience, ExperienceSession


class ExperienceSessionInline(admin.TabularInline):
    model = ExperienceSession
    extra = 0
    fields = ("start_at", "duration_minutes", "price_override", "capacity")

    def get_readonly_fields(self, request, obj=None):
        return ("capacity",) if obj else ()


@admin.register(Experience)
class ExperienceAdmin(admin.ModelAdmin):
    list_display = ("title", "organizer", "price", "currency", "status", "created_at")
    list_filter = ("status", "currency")
    search_fields = ("title", "organizer__email")
    inlines = [ExperienceSessionInline]
