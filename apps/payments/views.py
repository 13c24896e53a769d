"""API views for checkout, provider callbacks and admin payment actions.

Provider callbacks (webhooks, PayPal return) are unauthenticated: they are
trusted only after their signature is verified or after the provider API
confirms the capture.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict
from urllib.parse import urlsplit

from django.conf import settings  # type: ignore
from django.http import HttpResponse, HttpResponseRedirect  # type: ignore
from django.utils.decorators import method_decorator  # type: ignore
from django.utils.http import url_has_allowed_host_and_scheme  # type: ignore
from django.views.decorators.csrf import csrf_exempt  # type: ignore
from rest_framework import permissions, status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from apps.users.permissions import IsExplorer, IsPlatformAdmin
from shared.domain.errors import DomainError, NotFoundError, ValidationError

from .gateways import get_gateway
from .gateways.cmi import CALLBACK_REPLY
from .models import Payment
from .reconciliation import SettlementReconciler
from .serializers import (
    CheckoutSerializer,
    PayPalCaptureSerializer,
    PaymentSerializer,
    RefundRequestSerializer,
)
from .services import create_checkout_for_booking, refund_payment

logger = logging.getLogger(__name__)

RESERVATIONS_PATH = "/dashboard/explorer/reservations"


def _origin(request) -> str:
    app_url = (getattr(settings, "APP_URL", "") or "").rstrip("/")
    return app_url or request.build_absolute_uri("/").rstrip("/")


def _safe_redirect(request, url, fallback: str) -> str:
    """Redirect targets from the query string must point back at this app."""
    app_url = getattr(settings, "APP_URL", "") or ""
    allowed = {request.get_host()}
    app_host = urlsplit(app_url).netloc
    if app_host:
        allowed.add(app_host)
    if url and url_has_allowed_host_and_scheme(url, allowed_hosts=allowed, require_https=request.is_secure()):
        return url
    if url:
        logger.warning(f"Ignoring redirect target outside the app: {url}")
    return fallback


def _flat(data) -> Dict[str, str]:
    """QueryDict or JSON body -> plain dict of strings."""
    if hasattr(data, "dict"):
        data = data.dict()
    if not isinstance(data, dict):
        return {}
    return {str(key): "" if value is None else str(value) for key, value in data.items()}


def _invalid_signature(provider: str) -> Response:
    logger.error(f"{provider} callback rejected: invalid signature")
    return Response(
        {"error": {"code": "INVALID_SIGNATURE", "message": "Invalid signature"}},
        status=status.HTTP_400_BAD_REQUEST,
    )


class ProviderCallbackView(APIView):
    """Base for endpoints called by payment providers."""

    authentication_classes: list = []
    permission_classes = [permissions.AllowAny]
    reconciler_class = SettlementReconciler

    def get_reconciler(self) -> SettlementReconciler:
        return self.reconciler_class()


# ===== Explorer =====

class CheckoutView(APIView):
    """POST {booking_id, success_url, cancel_url, provider?} -> {url, payment_id, provider}."""

    permission_classes = [IsExplorer]

    def post(self, request):  # type: ignore
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = create_checkout_for_booking(
            data["booking_id"],
            request.user,
            data["success_url"],
            data["cancel_url"],
            provider=data.get("provider"),
        )
        return Response(
            {"url": result.url, "payment_id": str(result.payment_id), "provider": result.provider},
            status=status.HTTP_200_OK,
        )


# ===== Admin =====

class RefundView(APIView):
    permission_classes = [IsPlatformAdmin]

    def post(self, request):  # type: ignore
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        refund = refund_payment(data["payment_id"], data.get("amount"), data.get("reason", ""))
        logger.info(f"Admin {request.user.pk} refunded payment {data['payment_id']}")
        return Response(
            {
                "refund_id": refund.pk,
                "provider_refund_id": refund.provider_refund_id or None,
                "status": refund.status,
            },
            status=status.HTTP_200_OK,
        )


class MarkPaidView(APIView):
    """Admin confirms a payment collected outside the gateways (e.g. cash)."""

    permission_classes = [IsPlatformAdmin]

    def post(self, request, payment_id):  # type: ignore
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError("Payment not found")
        outcome = SettlementReconciler().settle_success(payment, origin=_origin(request))
        payment.refresh_from_db()
        logger.info(f"Admin {request.user.pk} marked payment {payment.pk} as paid")
        return Response(
            {
                "payment": PaymentSerializer(payment).data,
                "booking_status": outcome.booking_status,
                "changed": outcome.transitioned,
            }
        )


# ===== PayPal =====

class PayPalReturnView(ProviderCallbackView):
    """
    Payer comes back from PayPal. Always answers with a redirect: to the
    success URL when the order was captured and the booking confirmed,
    otherwise to the cancel URL.
    """

    def get(self, request):  # type: ignore
        query = request.query_params
        origin = _origin(request)
        success_url = _safe_redirect(request, query.get("success"), f"{origin}{RESERVATIONS_PATH}?paid=1")
        cancel_url = _safe_redirect(request, query.get("cancel"), f"{origin}{RESERVATIONS_PATH}?cancelled=1")
        order_id = query.get("token")
        reconciler = self.get_reconciler()

        if not order_id:
            if query.get("cancelled") == "1" and query.get("paymentId"):
                try:
                    payment = reconciler.resolve("PAYPAL", query=query)
                    reconciler.settle_failure(
                        payment,
                        error_code="PAYER_CANCELLED",
                        error_message="Payer cancelled on PayPal",
                        abandoned=True,
                    )
                except DomainError as e:
                    logger.warning(f"PayPal cancel return could not be recorded: {e.message}")
            return HttpResponseRedirect(cancel_url)

        try:
            outcome = reconciler.capture_and_settle(
                "PAYPAL",
                order_id,
                query=query,
                origin=origin,
            )
        except Exception as e:
            logger.error(f"PayPal return for order {order_id} failed: {e}", exc_info=True)
            return HttpResponseRedirect(cancel_url)

        if outcome.payment_status == Payment.Status.SUCCEEDED and outcome.booking_status == "CONFIRMED":
            return HttpResponseRedirect(success_url)
        return HttpResponseRedirect(cancel_url)


class PayPalCaptureView(APIView):
    """POST {orderId, bookingId?, paymentId?} from the PayPal JS button flow."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):  # type: ignore
        serializer = PayPalCaptureSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        outcome = SettlementReconciler().capture_and_settle(
            "PAYPAL",
            data["orderId"],
            booking_id=data.get("bookingId"),
            payment_id=data.get("paymentId"),
            origin=_origin(request),
        )
        ok = outcome.payment_status == Payment.Status.SUCCEEDED
        return Response(
            {
                "ok": ok,
                "booking_id": str(outcome.booking_id),
                "payment_id": str(outcome.payment_id),
                "booking_status": outcome.booking_status,
            },
            status=status.HTTP_200_OK if ok else status.HTTP_400_BAD_REQUEST,
        )


# ===== Webhooks =====

@method_decorator(csrf_exempt, name="dispatch")
class StripeWebhookView(ProviderCallbackView):
    """
    Stripe events:
    - checkout.session.completed -> Payment PROCESSING
    - payment_intent.succeeded -> settle success
    - payment_intent.payment_failed -> settle failure
    """

    def post(self, request):  # type: ignore
        payload = request.body
        gateway = get_gateway("STRIPE")
        if not gateway.verify_webhook_signature(payload, request.META.get("HTTP_STRIPE_SIGNATURE")):
            return _invalid_signature("Stripe")

        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Invalid JSON")

        event_type = event.get("type", "")
        obj: Dict[str, Any] = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        logger.info(f"Stripe webhook {event.get('id')}: {event_type}")
        reconciler = self.get_reconciler()

        if event_type == "checkout.session.completed":
            payment = reconciler.resolve(
                "STRIPE",
                booking_id=metadata.get("bookingId"),
                payment_id=metadata.get("paymentId") or obj.get("client_reference_id"),
                provider_payment_id=obj.get("id"),
            )
            reconciler.mark_processing(payment, provider_payment_id=obj.get("payment_intent") or obj.get("id"))
        elif event_type == "payment_intent.succeeded":
            payment = reconciler.resolve(
                "STRIPE",
                booking_id=metadata.get("bookingId"),
                payment_id=metadata.get("paymentId"),
                provider_payment_id=obj.get("id"),
            )
            reconciler.settle_success(payment, provider_payment_id=obj.get("id"), origin=_origin(request))
        elif event_type == "payment_intent.payment_failed":
            payment = reconciler.resolve(
                "STRIPE",
                booking_id=metadata.get("bookingId"),
                payment_id=metadata.get("paymentId"),
                provider_payment_id=obj.get("id"),
            )
            error = obj.get("last_payment_error") or {}
            reconciler.settle_failure(
                payment,
                error_code=error.get("code") or "payment_failed",
                error_message=error.get("message") or "",
            )
        else:
            logger.debug(f"Stripe event {event_type} ignored")

        return Response({"received": True})


@method_decorator(csrf_exempt, name="dispatch")
class PayzoneWebhookView(ProviderCallbackView):
    """Payzone IPN. ``orderId`` is our payment id."""

    def post(self, request):  # type: ignore
        data = _flat(request.data)
        gateway = get_gateway("PAYZONE")
        if not gateway.verify_signature(data):
            return _invalid_signature("Payzone")

        order_id = data.get("orderId")
        if not order_id:
            raise ValidationError("orderId is required")

        reconciler = self.get_reconciler()
        payment = reconciler.resolve("PAYZONE", payment_id=order_id, provider_payment_id=order_id)
        status_value = data.get("status", "")
        if gateway.is_success(status_value):
            reconciler.settle_success(payment, origin=_origin(request))
        else:
            reconciler.settle_failure(
                payment,
                error_code=status_value.upper() or "DECLINED",
                error_message=data.get("message", ""),
                abandoned=True,
            )
        return Response({"ok": True})


@method_decorator(csrf_exempt, name="dispatch")
class CMIWebhookView(ProviderCallbackView):
    """CMI server-to-server callback. Replies ``ACTION=POSTAUTH`` once handled."""

    def post(self, request):  # type: ignore
        data = _flat(request.data)
        gateway = get_gateway("CMI")
        if not gateway.verify_hash(data):
            logger.error("CMI callback rejected: invalid hash")
            return HttpResponse("FAILURE", content_type="text/plain", status=status.HTTP_400_BAD_REQUEST)

        order_id = data.get("oid")
        if not order_id:
            return HttpResponse("FAILURE", content_type="text/plain", status=status.HTTP_400_BAD_REQUEST)

        reconciler = self.get_reconciler()
        payment = reconciler.resolve("CMI", payment_id=order_id, provider_payment_id=order_id)
        if gateway.is_success(data):
            reconciler.settle_success(payment, origin=_origin(request))
        else:
            reconciler.settle_failure(
                payment,
                error_code=data.get("ProcReturnCode") or "DECLINED",
                error_message=gateway.failure_reason(data) or "",
                abandoned=True,
            )
        return HttpResponse(CALLBACK_REPLY, content_type="text/plain")
