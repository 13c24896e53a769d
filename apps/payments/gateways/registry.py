"""Provider key -> adapter."""

from typing import Dict, Optional, Type

from shared.domain.errors import ValidationError

from .base import PaymentGateway
from .cash import CashGateway
from .cmi import CMIGateway
from .credentials import GatewaySettings, load_gateway_settings
from .paypal import PayPalGateway
from .payzone import PayzoneGateway
from .stripe import StripeGateway

GATEWAY_CLASSES: Dict[str, Type[PaymentGateway]] = {
    "STRIPE": StripeGateway,
    "PAYPAL": PayPalGateway,
    "PAYZONE": PayzoneGateway,
    "CMI": CMIGateway,
    "CASH": CashGateway,
}


def get_gateway(provider: str, gateway_settings: Optional[GatewaySettings] = None) -> PaymentGateway:
    key = (provider or "").upper()
    gateway_class = GATEWAY_CLASSES.get(key)
    if gateway_class is None:
        raise ValidationError(f"Unsupported payment provider: {provider}")
    return gateway_class(gateway_settings or load_gateway_settings(key))
