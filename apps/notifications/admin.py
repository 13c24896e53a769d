from django.contrib import admin

from .models import Notification, NotificationPreference


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "user", "event_type", "priority", "read_at", "created_at")
    list_filter = ("event_type", "priority")
    search_fields = ("title", "user__email")


@admin.register(NotificationPreference)
class NotificationPreferenceAdmin(admin.ModelAdmin):
    list_display = ("user", "toast_enabled", "email_enabled", "push_enabled", "updated_at")
