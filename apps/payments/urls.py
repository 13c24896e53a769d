"""URL routing for payments."""

from django.urls import path  # type: ignore

from .views import (
    CheckoutView,
    CMIWebhookView,
    MarkPaidView,
    PayPalCaptureView,
    PayPalReturnView,
    PayzoneWebhookView,
    RefundView,
    StripeWebhookView,
)

app_name = "payments"

urlpatterns = [
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("refunds/", RefundView.as_view(), name="refund"),
    path("<uuid:payment_id>/mark-paid/", MarkPaidView.as_view(), name="mark-paid"),
    path("paypal/return/", PayPalReturnView.as_view(), name="paypal-return"),
    path("paypal/capture/", PayPalCaptureView.as_view(), name="paypal-capture"),
    path("webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
    path("webhooks/payzone/", PayzoneWebhookView.as_view(), name="payzone-webhook"),
    path("webhooks/cmi/", CMIWebhookView.as_view(), name="cmi-webhook"),
]
