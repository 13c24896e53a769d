"""Domain error codes shared by every bounded context.

Each error carries a stable ``code`` and a user-safe ``message``;
``http_status`` is used by the API exception handler.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Domain error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    PENDING_BOOKING_EXISTS = "PENDING_BOOKING_EXISTS"
    PROVIDER_CONFIGURATION = "PROVIDER_CONFIGURATION"
    PROVIDER_COMMUNICATION = "PROVIDER_COMMUNICATION"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    RECONCILIATION_AMBIGUITY = "RECONCILIATION_AMBIGUITY"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    http_status: int = 400

    def __init__(self, message: str, *, code: Optional[ErrorCode] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(DomainError):
    """Malformed or out-of-range input."""

    code = ErrorCode.VALIDATION_ERROR
    http_status = 400


class AuthenticationRequired(DomainError):
    code = ErrorCode.AUTHENTICATION_REQUIRED
    http_status = 401


class AuthorizationError(DomainError):
    """Wrong role. Ownership mismatches are reported as NotFoundError."""

    code = ErrorCode.FORBIDDEN
    http_status = 403


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    http_status = 404


class CapacityExceeded(DomainError):
    """Raised when a session cannot fit the requested guests."""

    code = ErrorCode.CAPACITY_EXCEEDED
    http_status = 409

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            f"Not enough spots available: requested {requested}, available {max(available, 0)}"
        )
        self.requested = requested
        self.available = available


class IllegalTransition(DomainError):
    code = ErrorCode.ILLEGAL_TRANSITION
    http_status = 409


class PendingBookingExists(DomainError):
    code = ErrorCode.PENDING_BOOKING_EXISTS
    http_status = 409

    def __init__(self, booking_id) -> None:
        super().__init__("You already have a pending reservation for this experience")
        self.booking_id = booking_id


class ProviderConfigurationError(DomainError):
    """Missing or unusable gateway credentials. Fatal, never retried."""

    code = ErrorCode.PROVIDER_CONFIGURATION
    http_status = 500

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderCommunicationError(DomainError):
    """Network failure or error response from a payment provider."""

    code = ErrorCode.PROVIDER_COMMUNICATION
    http_status = 502

    def __init__(self, provider: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class NotSupported(DomainError):
    """The provider does not implement the requested capability."""

    code = ErrorCode.NOT_SUPPORTED
    http_status = 501

    def __init__(self, provider: str, capability: str) -> None:
        super().__init__(f"{provider} does not support {capability}")
        self.provider = provider
        self.capability = capability


class ReconciliationAmbiguity(DomainError):
    """A provider confirmation cannot be tied to a local payment."""

    code = ErrorCode.RECONCILIATION_AMBIGUITY
    http_status = 422
