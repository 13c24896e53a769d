"""
Gateway credentials

A credential stored in PaymentGatewayConfig.config is either a literal
secret or a reference to an environment variable (``env:NAME``). Fields
the config does not provide fall back to the provider's well-known
environment variables.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Union
import logging
import os

from django.conf import settings

from shared.domain.errors import ProviderConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "env:"


@dataclass(frozen=True)
class LiteralSecret:
    value: str

    def __repr__(self):
        return "LiteralSecret(***)"


@dataclass(frozen=True)
class EnvSecret:
    name: str


SecretRef = Union[LiteralSecret, EnvSecret]


def parse_secret(raw) -> Optional[SecretRef]:
    """``"env:NAME"`` -> EnvSecret, any other non-empty string -> LiteralSecret."""
    if raw is None:
        return None
    raw = str(raw).strip()
    if not raw:
        return None
    if raw.startswith(ENV_PREFIX):
        name = raw[len(ENV_PREFIX):].strip()
        return EnvSecret(name) if name else None
    return LiteralSecret(raw)


def resolve_secret(ref: Optional[SecretRef]) -> Optional[str]:
    if isinstance(ref, LiteralSecret):
        return ref.value
    if isinstance(ref, EnvSecret):
        return os.environ.get(ref.name) or None
    return None


# config field -> environment variable used when the config has no value
ENV_FALLBACKS: Dict[str, Dict[str, str]] = {
    "STRIPE": {
        "secretKey": "STRIPE_SECRET_KEY",
        "testSecretKey": "STRIPE_TEST_SECRET_KEY",
        "webhookSecret": "STRIPE_WEBHOOK_SECRET",
    },
    "PAYPAL": {
        "clientId": "PAYPAL_CLIENT_ID",
        "clientSecret": "PAYPAL_CLIENT_SECRET",
    },
    "PAYZONE": {
        "merchantId": "PAYZONE_MERCHANT_ID",
        "secretKey": "PAYZONE_SECRET_KEY",
        "gatewayUrl": "PAYZONE_GATEWAY_URL",
    },
    "CMI": {
        "clientId": "CMI_CLIENT_ID",
        "secretKey": "CMI_SECRET_KEY",
        "gatewayUrl": "CMI_GATEWAY_URL",
    },
    "CASH": {},
}


@dataclass
class GatewaySettings:
    """Resolved view of one provider's configuration."""

    provider: str
    test_mode: bool
    is_enabled: bool = True
    configured: bool = False
    values: Dict[str, SecretRef] = field(default_factory=dict)

    def get(self, name: str, *, required: bool = False) -> Optional[str]:
        value = resolve_secret(self.values.get(name))
        env_name = ENV_FALLBACKS.get(self.provider, {}).get(name)
        if value is None and env_name:
            value = os.environ.get(env_name) or None
        if value is None and required:
            hint = f" (config field '{name}' or {env_name})" if env_name else f" (config field '{name}')"
            raise ProviderConfigurationError(self.provider, f"missing credential{hint}")
        return value


def load_gateway_settings(provider: str) -> GatewaySettings:
    """
    Build GatewaySettings from the PaymentGatewayConfig row, if any.

    Without a row, test mode follows PAYMENTS_TEST_MODE and every
    credential comes from the environment.
    """
    from apps.payments.models import PaymentGatewayConfig

    provider = provider.upper()
    row = PaymentGatewayConfig.objects.filter(key=provider).first()
    if row is None:
        return GatewaySettings(
            provider=provider,
            test_mode=bool(getattr(settings, "PAYMENTS_TEST_MODE", True)),
        )

    values: Dict[str, SecretRef] = {}
    for key, raw in (row.config or {}).items():
        ref = parse_secret(raw)
        if ref is not None:
            values[key] = ref
    return GatewaySettings(
        provider=provider,
        test_mode=row.test_mode,
        is_enabled=row.is_enabled,
        configured=True,
        values=values,
    )
