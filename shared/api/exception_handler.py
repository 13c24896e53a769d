"""DRF exception handler that renders domain errors."""

from __future__ import annotations

import logging

from rest_framework import status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler as drf_exception_handler  # type: ignore

from shared.domain.errors import (
    CapacityExceeded,
    DomainError,
    PendingBookingExists,
    ProviderConfigurationError,
)

logger = logging.getLogger(__name__)


def domain_exception_handler(exc, context):
    """Map DomainError subclasses to ``{"error": {code, message}}`` responses.

    Everything else goes through the stock DRF handler.
    """
    if not isinstance(exc, DomainError):
        return drf_exception_handler(exc, context)

    view = context.get("view")
    view_name = view.__class__.__name__ if view is not None else "unknown"

    if isinstance(exc, ProviderConfigurationError):
        logger.error(f"Payment provider misconfigured ({exc.provider}) in {view_name}: {exc.message}")
        body = {"error": {"code": exc.code.value, "message": "Payment provider is not configured"}}
        return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if exc.http_status >= 500:
        logger.error(f"{view_name}: {exc}")
    else:
        logger.info(f"{view_name}: {exc}")

    body = {"error": {"code": exc.code.value, "message": exc.message}}
    if isinstance(exc, CapacityExceeded):
        body["error"]["available"] = max(exc.available, 0)
    elif isinstance(exc, PendingBookingExists):
        body["error"]["booking_id"] = str(exc.booking_id)
    return Response(body, status=exc.http_status)
