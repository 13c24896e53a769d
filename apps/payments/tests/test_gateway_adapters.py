"""Provider adapters: request building, signatures and error mapping."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlsplit

import requests
from django.test import SimpleTestCase

from apps.payments.gateways import CheckoutRequest, RefundRequest, get_gateway
from apps.payments.gateways.cash import CashGateway
from apps.payments.gateways.cmi import CMIGateway, build_hash
from apps.payments.gateways.credentials import GatewaySettings, LiteralSecret
from apps.payments.gateways.paypal import PayPalGateway, parse_custom_id
from apps.payments.gateways.payzone import PayzoneGateway, build_signature
from apps.payments.gateways.stripe import StripeGateway
from shared.domain.errors import (
    NotSupported,
    ProviderCommunicationError,
    ProviderConfigurationError,
    ValidationError,
)
from shared.domain.value_objects import Money

REQUESTS_PATH = "apps.payments.gateways.base.requests.request"


def _settings(provider: str, test_mode: bool = True, **values) -> GatewaySettings:
    return GatewaySettings(
        provider=provider,
        test_mode=test_mode,
        configured=True,
        values={key: LiteralSecret(value) for key, value in values.items()},
    )


def _response(payload, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.text = json.dumps(payload)
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def _checkout(amount: str = "450.50", currency: str = "MAD") -> CheckoutRequest:
    return CheckoutRequest(
        booking_id="11111111-1111-1111-1111-111111111111",
        payment_id="22222222-2222-2222-2222-222222222222",
        amount=Money(Decimal(amount), currency),
        description="Desert camp (12.05.2026 18:00)",
        success_url="https://app.example.com/pay/success",
        cancel_url="https://app.example.com/pay/cancel",
        customer_email="explorer@example.com",
    )


class StripeGatewayTests(SimpleTestCase):
    def setUp(self) -> None:
        self.gateway = StripeGateway(
            _settings("STRIPE", testSecretKey="sk_test_123", secretKey="sk_live_123", webhookSecret="whsec_abc")
        )

    @patch(REQUESTS_PATH)
    def test_checkout_sends_minor_units_and_metadata(self, request_mock) -> None:
        request_mock.return_value = _response({"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"})

        session = self.gateway.create_checkout(_checkout())

        self.assertEqual(session.redirect_url, "https://checkout.stripe.com/c/cs_test_1")
        self.assertEqual(session.provider_payment_id, "cs_test_1")
        method, url = request_mock.call_args.args
        kwargs = request_mock.call_args.kwargs
        self.assertEqual((method, url), ("POST", "https://api.stripe.com/v1/checkout/sessions"))
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test_123")
        form = kwargs["data"]
        self.assertEqual(form["line_items[0][price_data][unit_amount]"], "45050")
        self.assertEqual(form["line_items[0][price_data][currency]"], "mad")
        self.assertEqual(form["metadata[bookingId]"], "11111111-1111-1111-1111-111111111111")
        self.assertEqual(form["payment_intent_data[metadata][paymentId]"], "22222222-2222-2222-2222-222222222222")

    @patch(REQUESTS_PATH)
    def test_live_mode_uses_live_key(self, request_mock) -> None:
        request_mock.return_value = _response({"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"})
        gateway = StripeGateway(_settings("STRIPE", test_mode=False, secretKey="sk_live_123"))

        gateway.create_checkout(_checkout())

        self.assertEqual(request_mock.call_args.kwargs["headers"]["Authorization"], "Bearer sk_live_123")

    @patch(REQUESTS_PATH)
    def test_http_error_becomes_communication_error(self, request_mock) -> None:
        request_mock.return_value = _response({"error": {"message": "boom"}}, status_code=500)

        with self.assertRaises(ProviderCommunicationError) as ctx:
            self.gateway.create_checkout(_checkout())

        self.assertEqual(ctx.exception.status_code, 500)

    @patch(REQUESTS_PATH)
    def test_network_error_becomes_communication_error(self, request_mock) -> None:
        request_mock.side_effect = requests.exceptions.ConnectionError("connection refused")

        with self.assertRaises(ProviderCommunicationError):
            self.gateway.create_checkout(_checkout())

    @patch(REQUESTS_PATH)
    def test_missing_secret_is_configuration_error(self, request_mock) -> None:
        gateway = StripeGateway(_settings("STRIPE"))

        with patch.dict("os.environ", {"STRIPE_TEST_SECRET_KEY": ""}):
            with self.assertRaises(ProviderConfigurationError):
                gateway.create_checkout(_checkout())

        request_mock.assert_not_called()

    @patch(REQUESTS_PATH)
    def test_refund_uses_payment_intent(self, request_mock) -> None:
        request_mock.return_value = _response({"id": "re_1"})

        result = self.gateway.create_refund(
            RefundRequest(provider_payment_id="pi_1", amount=Money(Decimal("100.00"), "MAD"))
        )

        self.assertEqual(result.provider_refund_id, "re_1")
        self.assertEqual(request_mock.call_args.args[1], "https://api.stripe.com/v1/refunds")
        self.assertEqual(request_mock.call_args.kwargs["data"]["amount"], "10000")
        self.assertEqual(request_mock.call_args.kwargs["data"]["payment_intent"], "pi_1")

    def _signature(self, payload: bytes, timestamp: int, secret: str = "whsec_abc") -> str:
        signed = str(timestamp).encode() + b"." + payload
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    def test_webhook_signature(self) -> None:
        payload = b'{"type": "payment_intent.succeeded"}'
        now = int(time.time())

        self.assertTrue(self.gateway.verify_webhook_signature(payload, self._signature(payload, now), now=now))
        self.assertFalse(
            self.gateway.verify_webhook_signature(payload + b" ", self._signature(payload, now), now=now)
        )
        self.assertFalse(
            self.gateway.verify_webhook_signature(payload, self._signature(payload, now, "whsec_other"), now=now)
        )
        self.assertFalse(
            self.gateway.verify_webhook_signature(payload, self._signature(payload, now - 301), now=now)
        )
        self.assertFalse(self.gateway.verify_webhook_signature(payload, None, now=now))
        self.assertFalse(self.gateway.verify_webhook_signature(payload, "garbage", now=now))


class PayPalGatewayTests(SimpleTestCase):
    def setUp(self) -> None:
        self.gateway = PayPalGateway(_settings("PAYPAL", clientId="client", clientSecret="secret"))

    @patch(REQUESTS_PATH)
    def test_checkout_creates_order_with_return_urls(self, request_mock) -> None:
        request_mock.side_effect = [
            _response({"access_token": "token-1"}),
            _response(
                {
                    "id": "ORDER-1",
                    "links": [
                        {"rel": "self", "href": "https://api-m.sandbox.paypal.com/v2/checkout/orders/ORDER-1"},
                        {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"},
                    ],
                }
            ),
        ]

        session = self.gateway.create_checkout(_checkout())

        self.assertEqual(session.provider_payment_id, "ORDER-1")
        self.assertEqual(session.redirect_url, "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1")
        token_call, order_call = request_mock.call_args_list
        self.assertEqual(token_call.args[1], "https://api-m.sandbox.paypal.com/v1/oauth2/token")
        self.assertEqual(token_call.kwargs["auth"], ("client", "secret"))
        body = order_call.kwargs["json"]
        unit = body["purchase_units"][0]
        self.assertEqual(unit["amount"], {"currency_code": "MAD", "value": "450.50"})
        self.assertEqual(
            json.loads(unit["custom_id"]),
            {"bookingId": "11111111-1111-1111-1111-111111111111", "paymentId": "22222222-2222-2222-2222-222222222222"},
        )
        return_url = urlsplit(body["application_context"]["return_url"])
        self.assertEqual(return_url.path, "/api/v1/payments/paypal/return/")
        query = parse_qs(return_url.query)
        self.assertEqual(query["success"], ["https://app.example.com/pay/success"])
        self.assertEqual(query["paymentId"], ["22222222-2222-2222-2222-222222222222"])
        cancel_query = parse_qs(urlsplit(body["application_context"]["cancel_url"]).query)
        self.assertEqual(cancel_query["cancelled"], ["1"])

    @patch(REQUESTS_PATH)
    def test_capture_reads_custom_id(self, request_mock) -> None:
        custom_id = json.dumps({"bookingId": "b-1", "paymentId": "p-1"})
        request_mock.side_effect = [
            _response({"access_token": "token-1"}),
            _response(
                {
                    "id": "ORDER-1",
                    "status": "COMPLETED",
                    "purchase_units": [{"payments": {"captures": [{"custom_id": custom_id}]}}],
                }
            ),
        ]

        result = self.gateway.capture("ORDER-1")

        self.assertTrue(result.succeeded)
        self.assertEqual((result.booking_id, result.payment_id), ("b-1", "p-1"))
        self.assertEqual(
            request_mock.call_args.args[1],
            "https://api-m.sandbox.paypal.com/v2/checkout/orders/ORDER-1/capture",
        )

    @patch(REQUESTS_PATH)
    def test_capture_not_completed(self, request_mock) -> None:
        request_mock.side_effect = [
            _response({"access_token": "token-1"}),
            _response({"id": "ORDER-1", "status": "PAYER_ACTION_REQUIRED"}),
        ]

        result = self.gateway.capture("ORDER-1")

        self.assertFalse(result.succeeded)
        self.assertEqual(result.raw_status, "PAYER_ACTION_REQUIRED")

    def test_live_mode_base_url(self) -> None:
        gateway = PayPalGateway(_settings("PAYPAL", test_mode=False))
        self.assertEqual(gateway.base_url, "https://api-m.paypal.com")

    def test_parse_custom_id_tolerates_junk(self) -> None:
        self.assertEqual(parse_custom_id("not json"), (None, None))
        self.assertEqual(parse_custom_id(json.dumps([1, 2])), (None, None))
        self.assertEqual(parse_custom_id(None), (None, None))

    def test_refund_not_supported(self) -> None:
        with self.assertRaises(NotSupported):
            self.gateway.create_refund(RefundRequest(provider_payment_id="ORDER-1", amount=Money("10", "MAD")))


class PayzoneGatewayTests(SimpleTestCase):
    def setUp(self) -> None:
        self.gateway = PayzoneGateway(
            _settings("PAYZONE", merchantId="M-1", secretKey="pz-secret", gatewayUrl="https://pay.example.com/checkout")
        )

    def test_checkout_url_is_signed(self) -> None:
        session = self.gateway.create_checkout(_checkout())

        parts = urlsplit(session.redirect_url)
        self.assertEqual(f"{parts.scheme}://{parts.netloc}{parts.path}", "https://pay.example.com/checkout")
        query = {key: values[0] for key, values in parse_qs(parts.query).items()}
        self.assertEqual(query["orderId"], "22222222-2222-2222-2222-222222222222")
        self.assertEqual(query["amount"], "45050")
        self.assertEqual(query["ipnUrl"], "http://testserver/api/v1/payments/webhooks/payzone/")
        signature = query.pop("signature")
        self.assertEqual(signature, build_signature(query, "pz-secret"))
        self.assertEqual(session.provider_payment_id, "22222222-2222-2222-2222-222222222222")

    def test_verify_signature(self) -> None:
        data = {"orderId": "p-1", "status": "APPROVED", "amount": "1000"}
        signed = {**data, "signature": build_signature(data, "pz-secret")}

        self.assertTrue(self.gateway.verify_signature(signed))
        self.assertFalse(self.gateway.verify_signature({**signed, "amount": "1"}))
        self.assertFalse(self.gateway.verify_signature(data))

    def test_success_statuses(self) -> None:
        self.assertTrue(PayzoneGateway.is_success("approved"))
        self.assertFalse(PayzoneGateway.is_success("DECLINED"))
        self.assertFalse(PayzoneGateway.is_success(None))


class CMIGatewayTests(SimpleTestCase):
    def setUp(self) -> None:
        self.gateway = CMIGateway(_settings("CMI", clientId="600000000", secretKey="cmi-store-key"))

    def test_checkout_uses_major_units_and_hash(self) -> None:
        session = self.gateway.create_checkout(_checkout())

        parts = urlsplit(session.redirect_url)
        self.assertEqual(f"{parts.scheme}://{parts.netloc}{parts.path}", "https://testpayment.cmi.co.ma/fim/est3Dgate")
        query = {key: values[0] for key, values in parse_qs(parts.query).items()}
        self.assertEqual(query["amount"], "450.50")
        self.assertEqual(query["oid"], "22222222-2222-2222-2222-222222222222")
        self.assertEqual(query["callbackUrl"], "http://testserver/api/v1/payments/webhooks/cmi/")
        received = query.pop("hash")
        self.assertEqual(received, build_hash(query, "cmi-store-key"))

    def test_live_mode_url(self) -> None:
        gateway = CMIGateway(_settings("CMI", test_mode=False, clientId="1", secretKey="k"))
        self.assertIn("https://payment.cmi.co.ma/fim/est3Dgate", gateway.create_checkout(_checkout()).redirect_url)

    def test_verify_hash_and_outcome(self) -> None:
        data = {"oid": "p-1", "Response": "Approved", "ProcReturnCode": "00"}
        signed = {**data, "HASH": build_hash(data, "cmi-store-key")}

        self.assertTrue(self.gateway.verify_hash(signed))
        self.assertFalse(self.gateway.verify_hash({**signed, "oid": "p-2"}))
        self.assertTrue(CMIGateway.is_success(data))
        declined = {"Response": "Declined", "ProcReturnCode": "05", "ErrMsg": "Insufficient funds"}
        self.assertFalse(CMIGateway.is_success(declined))
        self.assertEqual(CMIGateway.failure_reason(declined), "Insufficient funds")


class CashAndRegistryTests(SimpleTestCase):
    def test_cash_redirects_to_success(self) -> None:
        session = CashGateway(_settings("CASH")).create_checkout(_checkout())

        self.assertEqual(session.redirect_url, "https://app.example.com/pay/success")
        self.assertTrue(session.provider_payment_id.startswith("CASH-"))

    def test_cash_cannot_refund(self) -> None:
        with self.assertRaises(NotSupported):
            CashGateway(_settings("CASH")).create_refund(
                RefundRequest(provider_payment_id="CASH-1", amount=Money("10", "MAD"))
            )

    def test_registry(self) -> None:
        gateway = get_gateway("stripe", _settings("STRIPE"))
        self.assertIsInstance(gateway, StripeGateway)
        with self.assertRaises(ValidationError):
            get_gateway("BITCOIN", _settings("BITCOIN"))
