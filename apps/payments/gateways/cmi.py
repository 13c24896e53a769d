"""
CMI adapter

Signed redirect to the CMI hosted payment page. Amounts go out in major
units; the order id is our payment id. CMI posts the outcome to the
callback URL and expects ``ACTION=POSTAUTH`` in reply.
"""

from typing import Dict, Optional
from urllib.parse import urlencode
import base64
import hashlib
import hmac
import logging
import time

from django.conf import settings
from django.urls import reverse

from .base import CheckoutRequest, CheckoutSession, PaymentGateway
from .credentials import GatewaySettings

logger = logging.getLogger(__name__)

TEST_GATEWAY_URL = "https://testpayment.cmi.co.ma/fim/est3Dgate"
LIVE_GATEWAY_URL = "https://payment.cmi.co.ma/fim/est3Dgate"
HASH_FIELDS_EXCLUDED = ("hash", "HASH", "encoding")
CALLBACK_REPLY = "ACTION=POSTAUTH"


def build_hash(payload: Dict[str, str], secret: str) -> str:
    """base64(SHA-512(sorted ``k=v&...`` + secret))."""
    base = "&".join(f"{key}={payload[key]}" for key in sorted(payload))
    digest = hashlib.sha512((base + secret).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


class CMIGateway(PaymentGateway):
    provider = "CMI"

    def __init__(self, gateway_settings: GatewaySettings):
        self.settings = gateway_settings

    def _gateway_url(self) -> str:
        default = TEST_GATEWAY_URL if self.settings.test_mode else LIVE_GATEWAY_URL
        return self.settings.get("gatewayUrl") or default

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        secret = self.settings.get("secretKey", required=True)
        client_id = self.settings.get("clientId", required=True)
        app_url = (getattr(settings, "APP_URL", "") or "").rstrip("/")

        payload = {
            "clientid": client_id,
            "oid": request.payment_id,
            "amount": f"{request.amount.amount:.2f}",
            "currency": request.amount.currency,
            "okUrl": request.success_url,
            "failUrl": request.cancel_url,
            "callbackUrl": f"{app_url}{reverse('payments:cmi-webhook')}",
            "email": request.customer_email or "",
            "billToName": "Guest",
            "rnd": str(int(time.time() * 1000)),
        }
        payload["hash"] = build_hash(payload, secret)
        gateway_url = self._gateway_url()
        separator = "&" if "?" in gateway_url else "?"
        return CheckoutSession(
            redirect_url=f"{gateway_url}{separator}{urlencode(payload)}",
            provider_payment_id=payload["oid"],
        )

    def verify_hash(self, data: Dict[str, str]) -> bool:
        secret = self.settings.get("secretKey", required=True)
        received = data.get("HASH") or data.get("hash")
        if not received:
            return False
        fields = {str(k): str(v) for k, v in data.items() if k not in HASH_FIELDS_EXCLUDED}
        return hmac.compare_digest(build_hash(fields, secret), str(received))

    @staticmethod
    def is_success(data: Dict[str, str]) -> bool:
        return data.get("Response") == "Approved" or data.get("ProcReturnCode") == "00"

    @staticmethod
    def failure_reason(data: Dict[str, str]) -> Optional[str]:
        return data.get("ErrMsg") or data.get("Response") or None
