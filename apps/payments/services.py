"""
Payment services: checkout and refunds.

No database lock is held while a provider is called. The Payment row is
committed first so a provider confirmation can always be matched to it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from django.conf import settings  # type: ignore
from django.db import transaction  # type: ignore
from django.utils import timezone  # type: ignore

from apps.bookings.domain.entities import PaymentStatus
from apps.bookings.models import Booking
from apps.bookings.services import _lock_queryset_if_possible, load_session_inventory
from shared.application.uow import DjangoUnitOfWork
from shared.domain.errors import (
    DomainError,
    IllegalTransition,
    NotFoundError,
    NotSupported,
    ProviderCommunicationError,
    ProviderConfigurationError,
    ValidationError,
)
from shared.domain.value_objects import Money

from .gateways import CheckoutRequest, CheckoutSession, RefundRequest, get_gateway
from .gateways.registry import GATEWAY_CLASSES
from .models import Payment, PaymentGatewayConfig, PaymentProvider, Refund

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    url: str
    payment_id: uuid.UUID
    provider: str


def _default_pipeline(booking_id, origin=None):
    from apps.bookings.application.confirmation import run_booking_confirmation_side_effects

    return run_booking_confirmation_side_effects(booking_id, origin=origin)


def provider_candidates(requested: Optional[str] = None) -> List[str]:
    """
    Providers to try, in order: requested, PAYMENTS_DEFAULT_PROVIDER, then
    the enabled gateway configs by priority.

    A provider with a disabled config row is never used. A provider with no
    row at all runs on environment credentials.
    """
    configs = list(PaymentGatewayConfig.objects.order_by("priority", "key"))
    disabled = {config.key for config in configs if not config.is_enabled}
    enabled = [config.key for config in configs if config.is_enabled]

    if requested:
        requested = requested.upper()
        if requested not in GATEWAY_CLASSES:
            raise ValidationError(f"Unsupported payment provider: {requested}")
        if requested in disabled:
            raise ValidationError(f"Payment provider {requested} is disabled")

    default = (getattr(settings, "PAYMENTS_DEFAULT_PROVIDER", "") or "").upper()
    ordered: List[str] = []
    for key in (requested, default, *enabled):
        if not key or key in ordered or key in disabled or key not in GATEWAY_CLASSES:
            continue
        ordered.append(key)
    return ordered


def _describe(booking: Booking) -> str:
    start = timezone.localtime(booking.session.start_at).strftime("%d.%m.%Y %H:%M")
    return f"{booking.experience.title} ({start})"


def create_checkout_for_booking(
    booking_id,
    explorer,
    success_url: str,
    cancel_url: str,
    provider: Optional[str] = None,
    *,
    gateway_factory: Callable = get_gateway,
    pipeline: Optional[Callable] = None,
) -> CheckoutResult:
    """
    Start paying for a PENDING booking.

    Each provider attempt gets its own Payment row. A communication
    failure cancels that row and moves on to the next provider; a
    configuration error stops immediately.
    """
    booking = (
        Booking.objects.select_related("experience", "session", "explorer")
        .filter(pk=booking_id, explorer_id=explorer.pk)
        .first()
    )
    if booking is None:
        raise NotFoundError("Booking not found")
    if booking.status != Booking.Status.PENDING:
        raise IllegalTransition("Only pending bookings can be paid")
    if booking.is_hold_expired:
        raise IllegalTransition("The reservation hold has expired")

    candidates = provider_candidates(provider)
    if not candidates:
        raise ProviderConfigurationError("PAYMENTS", "no payment provider is enabled")

    amount = Money(booking.total_price, booking.currency)
    description = _describe(booking)
    last_error: Optional[ProviderCommunicationError] = None

    for key in candidates:
        payment_id = uuid.uuid4()
        payment = Payment.objects.create(
            id=payment_id,
            booking=booking,
            provider=key,
            status=Payment.Status.REQUIRES_PAYMENT_METHOD,
            amount=amount.amount,
            currency=amount.currency,
            metadata={"bookingId": str(booking.pk), "paymentId": str(payment_id)},
        )
        request = CheckoutRequest(
            booking_id=str(booking.pk),
            payment_id=str(payment_id),
            amount=amount,
            description=description,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=booking.explorer.email or None,
        )

        try:
            session = gateway_factory(key).create_checkout(request)
        except ProviderCommunicationError as e:
            logger.warning(f"Checkout with {key} failed for booking {booking.pk}: {e.message}")
            payment.mark_cancelled(e.code.value, e.message)
            last_error = e
            continue
        except ProviderConfigurationError as e:
            logger.error(f"Payment provider {key} is misconfigured: {e.message}")
            payment.mark_cancelled(e.code.value, e.message)
            raise

        if key == PaymentProvider.CASH:
            try:
                _confirm_cash_payment(payment, session, pipeline or _default_pipeline)
            except DomainError as e:
                payment.mark_cancelled(e.code.value, e.message)
                raise
        else:
            _attach_payment(booking, payment, session)

        logger.info(f"Checkout started for booking {booking.pk}: payment {payment.pk} via {key}")
        return CheckoutResult(url=session.redirect_url, payment_id=payment.pk, provider=key)

    logger.error(f"All payment providers failed for booking {booking.pk}")
    raise last_error


def _attach_payment(booking: Booking, payment: Payment, session: CheckoutSession) -> None:
    with transaction.atomic():
        if session.provider_payment_id:
            payment.provider_payment_id = session.provider_payment_id
            payment.save(update_fields=["provider_payment_id", "updated_at"])
        Booking.objects.filter(pk=booking.pk, status=Booking.Status.PENDING).update(
            current_payment=payment,
            payment_status=Payment.Status.REQUIRES_PAYMENT_METHOD,
            updated_at=timezone.now(),
        )


def _confirm_cash_payment(payment: Payment, session: CheckoutSession, pipeline: Callable) -> None:
    """Cash is collected on site: the booking is confirmed right away.

    The hold is checked again under the booking lock; a hold that lapsed
    meanwhile is confirmed only if the session still has room.
    """
    now = timezone.now()
    with DjangoUnitOfWork() as uow:
        booking = _lock_queryset_if_possible(
            Booking.objects.select_related("experience").filter(pk=payment.booking_id),
            of=("self",),
        ).get()
        if booking.status != Booking.Status.PENDING:
            raise IllegalTransition("Only pending bookings can be paid")

        state = booking.to_domain()
        if state.is_expired(now):
            _, inventory = load_session_inventory(
                booking.session_id, lock=True, now=now, exclude_booking_id=booking.pk
            )
            inventory.reserve(booking.guests)

        payment.status = Payment.Status.PROCESSING
        payment.provider_payment_id = session.provider_payment_id or ""
        payment.save(update_fields=["status", "provider_payment_id", "updated_at"])

        state.confirm(payment_status=PaymentStatus.PROCESSING)
        booking.apply_domain(state)
        booking.current_payment = payment
        booking.save(update_fields=["current_payment", "updated_at"])
        uow.collect_events(state)

        booking_id = booking.pk
        uow.on_commit(lambda: pipeline(booking_id, origin="cash"))


def refund_payment(
    payment_id,
    amount: Optional[Decimal] = None,
    reason: str = "",
    *,
    gateway_factory: Callable = get_gateway,
) -> Refund:
    """
    Refund a SUCCEEDED payment, fully by default.

    A Refund row is written for every request sent to the provider.
    Raises NotSupported (HTTP 501) for providers without an API refund.
    """
    payment = Payment.objects.filter(pk=payment_id).first()
    if payment is None:
        raise NotFoundError("Payment not found")
    if payment.status != Payment.Status.SUCCEEDED:
        raise IllegalTransition("Only succeeded payments can be refunded")

    refund_amount = payment.amount if amount is None else Decimal(str(amount))
    if refund_amount <= 0 or refund_amount > payment.amount:
        raise ValidationError("Refund amount must be positive and not exceed the payment amount")
    if not payment.provider_payment_id:
        raise ValidationError("Payment has no provider reference to refund")

    gateway = gateway_factory(payment.provider)
    refund = Refund.objects.create(
        payment=payment,
        amount=refund_amount,
        currency=payment.currency,
        reason=reason or "",
        status=Refund.Status.PENDING,
    )

    try:
        result = gateway.create_refund(
            RefundRequest(
                provider_payment_id=payment.provider_payment_id,
                amount=Money(refund_amount, payment.currency),
                reason=reason or "",
            )
        )
    except (NotSupported, ProviderCommunicationError, ProviderConfigurationError) as e:
        refund.status = Refund.Status.FAILED
        refund.error_message = e.message
        refund.save(update_fields=["status", "error_message", "updated_at"])
        logger.warning(f"Refund of payment {payment.pk} via {payment.provider} failed: {e.message}")
        raise

    with transaction.atomic():
        refund.status = Refund.Status.SUCCEEDED
        refund.provider_refund_id = result.provider_refund_id or ""
        refund.save(update_fields=["status", "provider_refund_id", "updated_at"])
        payment.mark_refunded(refund_amount)
        Booking.objects.filter(pk=payment.booking_id, current_payment_id=payment.pk).update(
            payment_status=Payment.Status.REFUNDED,
            updated_at=timezone.now(),
        )

    logger.info(f"Payment {payment.pk} refunded {refund_amount} {payment.currency} ({refund.provider_refund_id})")
    return refund
