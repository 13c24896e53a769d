"""
PayPal adapter

Orders API v2 with OAuth2 client credentials. Orders are created with
intent CAPTURE and must be captured explicitly once the payer approves.
"""

from typing import Optional, Tuple
from urllib.parse import urlencode, urlsplit
import json
import logging

from django.conf import settings
from django.urls import reverse

from shared.domain.errors import ProviderCommunicationError

from .base import CaptureResult, CheckoutRequest, CheckoutSession, PaymentGateway
from .credentials import GatewaySettings

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"


def parse_custom_id(raw) -> Tuple[Optional[str], Optional[str]]:
    """``custom_id`` is JSON ``{"bookingId", "paymentId"}``; anything else yields Nones."""
    if not raw:
        return None, None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None, None
    if not isinstance(data, dict):
        return None, None
    return data.get("bookingId") or None, data.get("paymentId") or None


class PayPalGateway(PaymentGateway):
    provider = "PAYPAL"
    requires_capture = True

    def __init__(self, gateway_settings: GatewaySettings):
        self.settings = gateway_settings

    @property
    def base_url(self) -> str:
        return SANDBOX_BASE_URL if self.settings.test_mode else LIVE_BASE_URL

    def _access_token(self) -> str:
        client_id = self.settings.get("clientId", required=True)
        client_secret = self.settings.get("clientSecret", required=True)
        data = self._request(
            "POST",
            f"{self.base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(client_id, client_secret),
        )
        token = data.get("access_token")
        if not token:
            raise ProviderCommunicationError(self.provider, "OAuth response has no access_token")
        return token

    def _return_urls(self, request: CheckoutRequest) -> Tuple[str, str]:
        app_url = (getattr(settings, "APP_URL", "") or "").rstrip("/")
        if not app_url:
            parts = urlsplit(request.success_url)
            app_url = f"{parts.scheme}://{parts.netloc}"
        endpoint = f"{app_url}{reverse('payments:paypal-return')}"
        ids = {"bookingId": request.booking_id, "paymentId": request.payment_id}
        return_url = f"{endpoint}?" + urlencode(
            {"success": request.success_url, "cancel": request.cancel_url, **ids}
        )
        cancel_url = f"{endpoint}?" + urlencode({"cancelled": "1", "cancel": request.cancel_url, **ids})
        return return_url, cancel_url

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        token = self._access_token()
        return_url, cancel_url = self._return_urls(request)
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {
                        "currency_code": request.amount.currency,
                        "value": f"{request.amount.amount:.2f}",
                    },
                    "custom_id": json.dumps(
                        {"bookingId": request.booking_id, "paymentId": request.payment_id}
                    ),
                    "description": request.description[:127],
                }
            ],
            "application_context": {
                "return_url": return_url,
                "cancel_url": cancel_url,
                "user_action": "PAY_NOW",
            },
        }
        data = self._request(
            "POST",
            f"{self.base_url}/v2/checkout/orders",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )
        order_id = data.get("id")
        approve = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if not order_id or not approve:
            raise ProviderCommunicationError(self.provider, "Order response has no id or approve link")
        logger.info(f"PayPal order {order_id} created for payment {request.payment_id}")
        return CheckoutSession(redirect_url=approve, provider_payment_id=order_id)

    def capture(self, provider_payment_id: str) -> CaptureResult:
        token = self._access_token()
        data = self._request(
            "POST",
            f"{self.base_url}/v2/checkout/orders/{provider_payment_id}/capture",
            json={},
            headers={"Authorization": f"Bearer {token}"},
        )
        status = str(data.get("status") or "")
        booking_id, payment_id = None, None
        for unit in data.get("purchase_units") or []:
            booking_id, payment_id = parse_custom_id(unit.get("custom_id"))
            if not booking_id:
                captures = (unit.get("payments") or {}).get("captures") or []
                if captures:
                    booking_id, payment_id = parse_custom_id(captures[0].get("custom_id"))
            if booking_id or payment_id:
                break

        logger.info(f"PayPal order {provider_payment_id} capture status: {status}")
        return CaptureResult(
            provider_payment_id=data.get("id") or provider_payment_id,
            succeeded=status == "COMPLETED",
            booking_id=booking_id,
            payment_id=payment_id,
            raw_status=status,
        )
