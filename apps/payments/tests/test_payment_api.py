"""API tests for checkout, provider callbacks and admin payment actions."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock, patch
from urllib.parse import urlencode

import requests
from django.test import override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.models import Booking
from apps.payments.gateways.cmi import build_hash
from apps.payments.gateways.payzone import build_signature
from apps.payments.models import Payment, PaymentGatewayConfig, Refund
from apps.tickets.models import Ticket
from apps.users.models import User
from shared.testing import make_session, make_user

WEBHOOK_SECRET = "whsec_test_secret"


class PaymentAPITestCase(APITestCase):
    def setUp(self) -> None:
        self.explorer = make_user(User.RoleChoices.EXPLORER)
        self.admin = make_user(User.RoleChoices.ADMIN)
        session = make_session(capacity=4)
        self.booking = Booking.objects.create(
            explorer=self.explorer,
            experience=session.experience,
            session=session,
            guests=2,
            total_price=Decimal("500.00"),
            expires_at=timezone.now() + timedelta(minutes=20),
        )

    def _payment(self, provider: str, **extra) -> Payment:
        fields = {
            "booking": self.booking,
            "provider": provider,
            "status": Payment.Status.REQUIRES_PAYMENT_METHOD,
            "amount": Decimal("500.00"),
            "currency": "MAD",
        }
        fields.update(extra)
        payment = Payment.objects.create(**fields)
        Booking.objects.filter(pk=self.booking.pk).update(current_payment=payment)
        return payment


class CheckoutAPITests(PaymentAPITestCase):
    def test_cash_checkout_confirms_booking(self) -> None:
        self.client.force_authenticate(self.explorer)
        payload = {
            "booking_id": str(self.booking.pk),
            "success_url": "https://app.example.com/ok",
            "cancel_url": "https://app.example.com/cancel",
            "provider": "cash",
        }

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(reverse("payments:checkout"), payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["url"], "https://app.example.com/ok")
        self.assertEqual(response.data["provider"], "CASH")
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(Ticket.objects.filter(booking=self.booking).count(), 2)

    def test_misconfigured_provider_is_server_error(self) -> None:
        self.client.force_authenticate(self.explorer)
        payload = {
            "booking_id": str(self.booking.pk),
            "success_url": "https://app.example.com/ok",
            "cancel_url": "https://app.example.com/cancel",
            "provider": "STRIPE",
        }

        with patch.dict("os.environ", {"STRIPE_TEST_SECRET_KEY": ""}):
            response = self.client.post(reverse("payments:checkout"), payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["error"]["code"], "PROVIDER_CONFIGURATION")
        self.assertNotIn("STRIPE_TEST_SECRET_KEY", response.data["error"]["message"])

    def test_only_explorers_check_out(self) -> None:
        self.client.force_authenticate(self.admin)

        response = self.client.post(reverse("payments:checkout"), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class StripeWebhookTests(PaymentAPITestCase):
    def setUp(self) -> None:
        super().setUp()
        PaymentGatewayConfig.objects.create(
            key="STRIPE",
            name="Stripe",
            config={"testSecretKey": "sk_test_1", "webhookSecret": WEBHOOK_SECRET},
            is_enabled=True,
        )
        self.payment = self._payment("STRIPE", provider_payment_id="cs_test_1")
        self.url = reverse("payments:stripe-webhook")

    def _post(self, event: dict, secret: str = WEBHOOK_SECRET):
        body = json.dumps(event).encode()
        timestamp = int(time.time())
        digest = hmac.new(secret.encode(), str(timestamp).encode() + b"." + body, hashlib.sha256).hexdigest()
        return self.client.post(
            self.url,
            data=body,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=f"t={timestamp},v1={digest}",
        )

    def _event(self, event_type: str, **obj) -> dict:
        data = {
            "id": "pi_test_1",
            "metadata": {"bookingId": str(self.booking.pk), "paymentId": str(self.payment.pk)},
        }
        data.update(obj)
        return {"id": "evt_1", "type": event_type, "data": {"object": data}}

    def test_payment_intent_succeeded_confirms_booking_once(self) -> None:
        event = self._event("payment_intent.succeeded")

        with self.captureOnCommitCallbacks(execute=True):
            first = self._post(event)
        with self.captureOnCommitCallbacks(execute=True):
            second = self._post(event)

        self.assertEqual(first.status_code, status.HTTP_200_OK, first.data)
        self.assertEqual(first.data, {"received": True})
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.SUCCEEDED)
        self.assertEqual(self.payment.provider_payment_id, "pi_test_1")
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(Ticket.objects.filter(booking=self.booking).count(), 2)

    def test_checkout_completed_marks_processing(self) -> None:
        event = self._event("checkout.session.completed", id="cs_test_1", payment_intent="pi_test_1")

        response = self._post(event)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.PROCESSING)
        self.assertEqual(self.payment.provider_payment_id, "pi_test_1")

    def test_payment_failed_cancels_payment(self) -> None:
        event = self._event(
            "payment_intent.payment_failed",
            last_payment_error={"code": "card_declined", "message": "Declined"},
        )

        response = self._post(event)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.CANCELLED)
        self.assertEqual(self.payment.error_code, "card_declined")
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)

    def test_invalid_signature_is_rejected(self) -> None:
        response = self._post(self._event("payment_intent.succeeded"), secret="whsec_wrong")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"]["code"], "INVALID_SIGNATURE")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.REQUIRES_PAYMENT_METHOD)

    def test_unmatched_payment_is_unprocessable(self) -> None:
        event = {
            "id": "evt_2",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_unknown", "metadata": {}}},
        }

        response = self._post(event)

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data["error"]["code"], "RECONCILIATION_AMBIGUITY")


class PayzoneWebhookTests(PaymentAPITestCase):
    def setUp(self) -> None:
        super().setUp()
        PaymentGatewayConfig.objects.create(
            key="PAYZONE", name="Payzone", config={"secretKey": "pz-secret"}, is_enabled=True
        )
        self.payment = self._payment("PAYZONE")
        self.payment.provider_payment_id = str(self.payment.pk)
        self.payment.save(update_fields=["provider_payment_id"])
        self.url = reverse("payments:payzone-webhook")

    def _signed(self, **data) -> dict:
        payload = {"orderId": str(self.payment.pk), **data}
        return {**payload, "signature": build_signature(payload, "pz-secret")}

    def test_approved_ipn_settles_payment(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(self.url, self._signed(status="APPROVED", amount="50000"), format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data, {"ok": True})
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)

    def test_declined_ipn_cancels_payment(self) -> None:
        response = self.client.post(self.url, self._signed(status="DECLINED", message="Refused"), format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.CANCELLED)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)
        self.assertEqual(self.booking.payment_status, Booking.PaymentStatus.CANCELLED)

    def test_bad_signature(self) -> None:
        data = self._signed(status="APPROVED")
        data["status"] = "DECLINED"

        response = self.client.post(self.url, data, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"]["code"], "INVALID_SIGNATURE")


class CMIWebhookTests(PaymentAPITestCase):
    def setUp(self) -> None:
        super().setUp()
        PaymentGatewayConfig.objects.create(
            key="CMI", name="CMI", config={"clientId": "600001", "secretKey": "cmi-key"}, is_enabled=True
        )
        self.payment = self._payment("CMI")
        self.url = reverse("payments:cmi-webhook")

    def _signed(self, **data) -> dict:
        payload = {"oid": str(self.payment.pk), **data}
        return {**payload, "HASH": build_hash(payload, "cmi-key")}

    def test_approved_callback_replies_postauth(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(self.url, self._signed(Response="Approved", ProcReturnCode="00"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.content, b"ACTION=POSTAUTH")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.SUCCEEDED)

    def test_declined_callback(self) -> None:
        response = self.client.post(
            self.url, self._signed(Response="Declined", ProcReturnCode="05", ErrMsg="Insufficient funds")
        )

        self.assertEqual(response.content, b"ACTION=POSTAUTH")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.CANCELLED)
        self.assertEqual(self.payment.error_code, "05")
        self.assertEqual(self.payment.error_message, "Insufficient funds")

    def test_invalid_hash(self) -> None:
        data = self._signed(Response="Approved", ProcReturnCode="00")
        data["HASH"] = "forged"

        response = self.client.post(self.url, data)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.content, b"FAILURE")


@override_settings(APP_URL="https://app.example.com")
class PayPalReturnTests(PaymentAPITestCase):
    def setUp(self) -> None:
        super().setUp()
        PaymentGatewayConfig.objects.create(
            key="PAYPAL", name="PayPal", config={"clientId": "id", "clientSecret": "secret"}, is_enabled=True
        )
        self.payment = self._payment("PAYPAL", provider_payment_id="ORDER-1")
        self.url = reverse("payments:paypal-return")
        self.ids = {"bookingId": str(self.booking.pk), "paymentId": str(self.payment.pk)}

    def _response(self, payload) -> Mock:
        response = Mock()
        response.status_code = 200
        response.json.return_value = payload
        response.raise_for_status.return_value = None
        return response

    @patch("apps.payments.gateways.base.requests.request")
    def test_approved_order_is_captured_and_redirected(self, request_mock) -> None:
        request_mock.side_effect = [
            self._response({"access_token": "token"}),
            self._response(
                {
                    "id": "ORDER-1",
                    "status": "COMPLETED",
                    "purchase_units": [{"custom_id": json.dumps(self.ids)}],
                }
            ),
        ]
        query = urlencode(
            {
                "token": "ORDER-1",
                "success": "https://app.example.com/ok",
                "cancel": "https://app.example.com/cancel",
                **self.ids,
            }
        )

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.get(f"{self.url}?{query}")

        self.assertEqual(response.status_code, status.HTTP_302_FOUND)
        self.assertEqual(response["Location"], "https://app.example.com/ok")
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)

    def test_payer_cancel_redirects_and_records(self) -> None:
        query = urlencode({"cancelled": "1", "cancel": "https://app.example.com/cancel", **self.ids})

        response = self.client.get(f"{self.url}?{query}")

        self.assertEqual(response.status_code, status.HTTP_302_FOUND)
        self.assertEqual(response["Location"], "https://app.example.com/cancel")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.CANCELLED)
        self.assertEqual(self.payment.error_code, "PAYER_CANCELLED")

    @patch("apps.payments.gateways.base.requests.request")
    def test_provider_failure_redirects_to_cancel(self, request_mock) -> None:
        request_mock.side_effect = requests.exceptions.ConnectionError("offline")
        query = urlencode({"token": "ORDER-1", "cancel": "https://app.example.com/cancel", **self.ids})

        response = self.client.get(f"{self.url}?{query}")

        self.assertEqual(response.status_code, status.HTTP_302_FOUND)
        self.assertEqual(response["Location"], "https://app.example.com/cancel")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.Status.CANCELLED)

    def test_foreign_redirect_targets_fall_back_to_reservations(self) -> None:
        query = urlencode({"cancelled": "1", "cancel": "https://evil.example/phish", **self.ids})

        response = self.client.get(f"{self.url}?{query}")

        self.assertEqual(response.status_code, status.HTTP_302_FOUND)
        self.assertEqual(
            response["Location"], "https://app.example.com/dashboard/explorer/reservations?cancelled=1"
        )

    def test_scheme_relative_redirect_is_rejected(self) -> None:
        query = urlencode({"cancelled": "1", "cancel": "//evil.example/phish", **self.ids})

        response = self.client.get(f"{self.url}?{query}")

        self.assertTrue(response["Location"].startswith("https://app.example.com/dashboard/"))


class AdminPaymentActionTests(PaymentAPITestCase):
    def test_mark_paid_confirms_booking(self) -> None:
        payment = self._payment("CASH", provider_payment_id="CASH-1", status=Payment.Status.PROCESSING)
        self.client.force_authenticate(self.admin)
        url = reverse("payments:mark-paid", args=[payment.pk])

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(url)
        again = self.client.post(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertTrue(response.data["changed"])
        self.assertEqual(response.data["booking_status"], "CONFIRMED")
        self.assertEqual(response.data["payment"]["status"], "SUCCEEDED")
        self.assertFalse(again.data["changed"])

    def test_mark_paid_requires_admin(self) -> None:
        payment = self._payment("CASH")
        self.client.force_authenticate(self.explorer)

        response = self.client.post(reverse("payments:mark-paid", args=[payment.pk]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_refund_of_cash_payment_is_not_supported(self) -> None:
        payment = self._payment("CASH", provider_payment_id="CASH-1", status=Payment.Status.SUCCEEDED)
        self.client.force_authenticate(self.admin)

        response = self.client.post(reverse("payments:refund"), {"payment_id": str(payment.pk)}, format="json")

        self.assertEqual(response.status_code, status.HTTP_501_NOT_IMPLEMENTED, response.data)
        self.assertEqual(response.data["error"]["code"], "NOT_SUPPORTED")
        self.assertEqual(Refund.objects.get().status, Refund.Status.FAILED)

    def test_refund_through_stripe(self) -> None:
        PaymentGatewayConfig.objects.create(
            key="STRIPE", name="Stripe", config={"testSecretKey": "sk_test_1"}, is_enabled=True
        )
        payment = self._payment("STRIPE", provider_payment_id="pi_1", status=Payment.Status.SUCCEEDED)
        self.client.force_authenticate(self.admin)
        stripe_response = Mock()
        stripe_response.json.return_value = {"id": "re_1"}
        stripe_response.raise_for_status.return_value = None

        with patch("apps.payments.gateways.base.requests.request", return_value=stripe_response):
            response = self.client.post(
                reverse("payments:refund"),
                {"payment_id": str(payment.pk), "amount": "100.00", "reason": "goodwill"},
                format="json",
            )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["provider_refund_id"], "re_1")
        self.assertEqual(response.data["status"], "SUCCEEDED")
        payment.refresh_from_db()
        self.assertEqual(payment.refunded_amount, Decimal("100.00"))
