from django.contrib import admin

from .models import Payment, PaymentGatewayConfig, Refund


class RefundInline(admin.TabularInline):
    model = Refund
    extra = 0
    readonly_fields = ("amount", "currency", "reason", "status", "provider_refund_id", "created_at")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "provider", "status", "amount", "currency", "error_code", "created_at")
    list_filter = ("provider", "status")
    search_fields = ("id", "provider_payment_id", "booking__booking_code")
    readonly_fields = ("captured_at", "refunded_at", "refunded_amount", "created_at", "updated_at")
    inlines = [RefundInline]


@admin.register(PaymentGatewayConfig)
class PaymentGatewayConfigAdmin(admin.ModelAdmin):
    list_display = ("key", "name", "type", "is_enabled", "test_mode", "priority")
    list_editable = ("is_enabled", "test_mode", "priority")
    exclude = ("config",)
