"""
Payment gateway interface

Every provider adapter turns a CheckoutRequest into a redirect URL and,
where the provider allows it, refunds and captures payments. Adapters do
no database work: reading and writing Payment rows belongs to the
checkout service and the settlement reconciler.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional
import logging

import requests

from shared.domain.errors import NotSupported, ProviderCommunicationError
from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


@dataclass(frozen=True)
class CheckoutRequest:
    booking_id: str
    payment_id: str
    amount: Money
    description: str
    success_url: str
    cancel_url: str
    customer_email: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def provider_metadata(self) -> Dict[str, str]:
        """String metadata sent to the provider, always with both ids."""
        data = {str(k): str(v) for k, v in self.metadata.items()}
        data["bookingId"] = self.booking_id
        data["paymentId"] = self.payment_id
        return data


@dataclass(frozen=True)
class CheckoutSession:
    redirect_url: str
    provider_payment_id: Optional[str] = None


@dataclass(frozen=True)
class RefundRequest:
    provider_payment_id: str
    amount: Money
    reason: str = ''


@dataclass(frozen=True)
class RefundResult:
    provider_refund_id: Optional[str] = None


@dataclass(frozen=True)
class CaptureResult:
    provider_payment_id: str
    succeeded: bool
    booking_id: Optional[str] = None
    payment_id: Optional[str] = None
    raw_status: str = ''


class PaymentGateway(ABC):
    """Base class for provider adapters."""

    provider: str = ''
    requires_capture: bool = False
    supports_refunds: bool = False

    @abstractmethod
    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        pass

    def create_refund(self, request: RefundRequest) -> RefundResult:
        raise NotSupported(self.provider, "refunds")

    def capture(self, provider_payment_id: str) -> CaptureResult:
        raise NotSupported(self.provider, "capture")

    # --- HTTP helpers -----------------------------------------------------
    def _request(self, method: str, url: str, **kwargs) -> dict:
        """
        Call the provider API and return the decoded JSON body.

        Network errors and non-2xx answers become ProviderCommunicationError.
        """
        kwargs.setdefault("timeout", REQUEST_TIMEOUT)
        try:
            response = requests.request(method, url, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            body = e.response.text[:500] if e.response is not None else ''
            logger.error(f"{self.provider} API error {status_code} on {url}: {body}")
            raise ProviderCommunicationError(
                self.provider, f"API error {status_code}", status_code=status_code
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.provider} request to {url} failed: {e}")
            raise ProviderCommunicationError(self.provider, f"Network error: {e}")

        try:
            return response.json()
        except ValueError:
            raise ProviderCommunicationError(self.provider, "Invalid JSON in provider response")
