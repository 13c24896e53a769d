"""Cash on site: no external gateway, the payer goes straight to the success URL."""

import time

from .base import CheckoutRequest, CheckoutSession, PaymentGateway
from .credentials import GatewaySettings


class CashGateway(PaymentGateway):
    provider = "CASH"

    def __init__(self, gateway_settings: GatewaySettings):
        self.settings = gateway_settings

    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        return CheckoutSession(
            redirect_url=request.success_url,
            provider_payment_id=f"CASH-{int(time.time() * 1000)}",
        )
