from .base import (
    CaptureResult,
    CheckoutRequest,
    CheckoutSession,
    PaymentGateway,
    RefundRequest,
    RefundResult,
)
from .credentials import EnvSecret, GatewaySettings, LiteralSecret, load_gateway_settings, parse_secret, resolve_secret
from .registry import GATEWAY_CLASSES, get_gateway

__all__ = [
    "CaptureResult",
    "CheckoutRequest",
    "CheckoutSession",
    "EnvSecret",
    "GATEWAY_CLASSES",
    "GatewaySettings",
    "LiteralSecret",
    "PaymentGateway",
    "RefundRequest",
    "RefundResult",
    "get_gateway",
    "load_gateway_settings",
    "parse_secret",
    "resolve_secret",
]
