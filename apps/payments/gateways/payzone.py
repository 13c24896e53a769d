"""
Payzone adapter

Signed redirect: the payer is sent to the Payzone page with the order
fields and an HMAC-SHA256 signature in the query string. Payzone reports
the outcome to the IPN webhook with the same kind of signature.
"""

from typing import Dict, Optional
from urllib.parse import urlencode
import hashlib
import hmac
import logging

from django.conf import settings
from django.urls import reverse

from .base import CheckoutRequest, CheckoutSession, PaymentGateway
from .credentials import GatewaySettings

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "https://secure.payzone.ma/checkout"
SUCCESS_STATUSES = ("APPROVED", "SUCCESS", "SUCCEEDED")


def build_signature(payload: Dict[str, str], secret: str) -> str:
    """HMAC-SHA256 hex over ``k=v`` pairs sorted by key and joined with ``&``."""
    base = "&".join(f"{key}={payload[key]}" for key in sorted(payload))
    return hmac.new(secret.encode("utf-8"), base.encode("utf-8"), hashlib.sha256).hexdigest()


class PayzoneGateway(PaymentGateway):
    provider = "PAYZONE"

    def __init__(self, gateway_settings: GatewaySettings):
        self.settings = gateway_settings

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        secret = self.settings.get("secretKey", required=True)
        gateway_url = self.settings.get("gatewayUrl") or DEFAULT_GATEWAY_URL
        app_url = (getattr(settings, "APP_URL", "") or "").rstrip("/")

        payload = {
            "orderId": request.payment_id,
            "amount": str(request.amount.minor_units),
            "currency": request.amount.currency,
            "successUrl": request.success_url,
            "cancelUrl": request.cancel_url,
            "ipnUrl": f"{app_url}{reverse('payments:payzone-webhook')}",
            "description": request.description,
        }
        merchant_id = self.settings.get("merchantId")
        if merchant_id:
            payload["merchantId"] = merchant_id
        if request.customer_email:
            payload["customerEmail"] = request.customer_email

        signature = build_signature(payload, secret)
        separator = "&" if "?" in gateway_url else "?"
        url = f"{gateway_url}{separator}{urlencode({**payload, 'signature': signature})}"
        return CheckoutSession(redirect_url=url, provider_payment_id=payload["orderId"])

    def verify_signature(self, data: Dict[str, str], signature: Optional[str] = None) -> bool:
        secret = self.settings.get("secretKey", required=True)
        fields = {str(k): str(v) for k, v in data.items() if k != "signature"}
        signature = signature if signature is not None else data.get("signature")
        if not signature:
            return False
        return hmac.compare_digest(build_signature(fields, secret), str(signature))

    @staticmethod
    def is_success(status: Optional[str]) -> bool:
        return (status or "").upper() in SUCCESS_STATUSES
