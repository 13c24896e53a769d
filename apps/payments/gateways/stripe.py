"""
Stripe adapter

Checkout Sessions and refunds over the form-encoded REST API. The live
or test secret is picked from the gateway's test_mode flag.
"""

from typing import Optional
import hashlib
import hmac
import logging
import time

from shared.domain.errors import ProviderCommunicationError

from .base import CheckoutRequest, CheckoutSession, PaymentGateway, RefundRequest, RefundResult
from .credentials import GatewaySettings

logger = logging.getLogger(__name__)

API_BASE = "https://api.stripe.com/v1"
SIGNATURE_TOLERANCE_SECONDS = 300


class StripeGateway(PaymentGateway):
    provider = "STRIPE"
    supports_refunds = True

    def __init__(self, gateway_settings: GatewaySettings):
        self.settings = gateway_settings

    def _secret_key(self) -> str:
        if self.settings.test_mode:
            return self.settings.get("testSecretKey", required=True)
        return self.settings.get("secretKey", required=True)

    def _post(self, path: str, form: dict) -> dict:
        return self._request(
            "POST",
            f"{API_BASE}{path}",
            data=form,
            headers={"Authorization": f"Bearer {self._secret_key()}"},
        )

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        metadata = request.provider_metadata()
        form = {
            "mode": "payment",
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "client_reference_id": request.payment_id,
            "line_items[0][price_data][currency]": request.amount.currency.lower(),
            "line_items[0][price_data][unit_amount]": str(request.amount.minor_units),
            "line_items[0][price_data][product_data][name]": request.description,
            "line_items[0][quantity]": "1",
        }
        if request.customer_email:
            form["customer_email"] = request.customer_email
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value
            form[f"payment_intent_data[metadata][{key}]"] = value

        session = self._post("/checkout/sessions", form)
        url = session.get("url")
        if not url:
            raise ProviderCommunicationError(self.provider, "Checkout session has no url")
        logger.info(f"Stripe checkout session {session.get('id')} created for payment {request.payment_id}")
        return CheckoutSession(redirect_url=url, provider_payment_id=session.get("id"))

    def create_refund(self, request: RefundRequest) -> RefundResult:
        form = {
            "payment_intent": request.provider_payment_id,
            "amount": str(request.amount.minor_units),
        }
        if request.reason:
            form["metadata[reason]"] = request.reason
        refund = self._post("/refunds", form)
        logger.info(f"Stripe refund {refund.get('id')} created for {request.provider_payment_id}")
        return RefundResult(provider_refund_id=refund.get("id"))

    def verify_webhook_signature(self, payload: bytes, header: Optional[str], *, now: Optional[int] = None) -> bool:
        """
        Check a ``Stripe-Signature`` header (``t=<ts>,v1=<hex>[,v1=...]``).

        The signed string is ``"<t>.<raw body>"`` under HMAC-SHA256 with the
        webhook secret; timestamps older than 300 seconds are rejected.
        """
        secret = self.settings.get("webhookSecret", required=True)
        if not header:
            return False

        timestamp = None
        signatures = []
        for item in header.split(","):
            key, _, value = item.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.extend(value.split())
        if not timestamp or not signatures:
            return False

        try:
            ts = int(timestamp)
        except ValueError:
            return False
        current = int(time.time()) if now is None else now
        if abs(current - ts) > SIGNATURE_TOLERANCE_SECONDS:
            return False

        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        signed = timestamp.encode("utf-8") + b"." + payload
        expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return any(hmac.compare_digest(expected, candidate) for candidate in signatures)
