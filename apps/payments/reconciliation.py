"""
Settlement reconciliation

Turns provider confirmations (webhooks, PayPal return/capture, admin
mark-paid) into local state. Works only through the PaymentGateway
interface so every provider settles the same way.

- the Payment moves to SUCCEEDED with a conditional update; only the call
  that performed it confirms the booking and schedules the side-effect
  pipeline, so duplicate deliveries change nothing
- a payment for a booking that is already CANCELLED (or whose expired
  hold no longer fits the session) is kept as SUCCEEDED and refunded
- so is a second payment for a booking another payment already paid for
- failures cancel the Payment and leave the booking PENDING
"""

from dataclasses import dataclass
from typing import Callable, Mapping, Optional
import logging
import uuid

from django.db import transaction
from django.utils import timezone

from apps.bookings.domain.entities import BookingStatus, PaymentStatus
from apps.bookings.models import Booking
from apps.bookings.services import _lock_queryset_if_possible, load_session_inventory
from shared.application.uow import DjangoUnitOfWork
from shared.domain.errors import DomainError, ReconciliationAmbiguity

from .gateways import get_gateway
from .models import Payment

logger = logging.getLogger(__name__)

MANUAL_REFUND_REQUIRED = "MANUAL_REFUND_REQUIRED"


@dataclass
class SettlementOutcome:
    payment_id: uuid.UUID
    booking_id: uuid.UUID
    transitioned: bool
    payment_status: str
    booking_status: str
    refund_scheduled: bool = False


def _as_uuid(value) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _default_pipeline(booking_id, origin=None):
    from apps.bookings.application.confirmation import run_booking_confirmation_side_effects

    return run_booking_confirmation_side_effects(booking_id, origin=origin)


def _default_refunder(payment_id, reason):
    from .services import refund_payment

    return refund_payment(payment_id, reason=reason)


class SettlementReconciler:
    """
    Usage:
        reconciler = SettlementReconciler()
        payment = reconciler.resolve("STRIPE", payment_id=metadata.get("paymentId"))
        reconciler.settle_success(payment, provider_payment_id=intent_id)
    """

    def __init__(
        self,
        gateway_factory: Callable = get_gateway,
        pipeline: Optional[Callable] = None,
        refunder: Optional[Callable] = None,
        bus=None,
    ):
        self.gateway_factory = gateway_factory
        self.pipeline = pipeline or _default_pipeline
        self.refunder = refunder or _default_refunder
        self.bus = bus

    # ===== Resolution =====

    def resolve(
        self,
        provider: str,
        *,
        booking_id=None,
        payment_id=None,
        query: Optional[Mapping] = None,
        provider_payment_id: Optional[str] = None,
    ) -> Payment:
        """
        Find the local Payment a provider message refers to.

        Ids are taken from the payload first, then from the return-URL
        query string, then the Payment is looked up by provider_payment_id.
        """
        query = query or {}
        booking_ref = _as_uuid(booking_id) or _as_uuid(query.get("bookingId"))
        payment_ref = _as_uuid(payment_id) or _as_uuid(query.get("paymentId"))

        payment = None
        if payment_ref is not None:
            payment = Payment.objects.filter(pk=payment_ref).first()
        if payment is None and provider_payment_id:
            payment = (
                Payment.objects.filter(provider=provider, provider_payment_id=provider_payment_id)
                .order_by("-created_at")
                .first()
            )

        if payment is None:
            logger.error(
                f"Unmatched {provider} confirmation: booking={booking_ref} payment={payment_ref} "
                f"provider_payment_id={provider_payment_id}"
            )
            raise ReconciliationAmbiguity("Payment for this confirmation could not be found")
        if payment.provider != provider:
            logger.error(f"{provider} confirmation points at {payment.provider} payment {payment.pk}")
            raise ReconciliationAmbiguity("Confirmation provider does not match the payment")
        if booking_ref is not None and booking_ref != payment.booking_id:
            logger.error(
                f"{provider} confirmation booking {booking_ref} contradicts payment {payment.pk} "
                f"(booking {payment.booking_id})"
            )
            raise ReconciliationAmbiguity("Booking does not match the payment")
        return payment

    # ===== Success =====

    def settle_success(
        self,
        payment: Payment,
        *,
        provider_payment_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> SettlementOutcome:
        now = timezone.now()
        with DjangoUnitOfWork(self.bus) as uow:
            updates = {
                "status": Payment.Status.SUCCEEDED,
                "captured_at": now,
                "error_code": "",
                "error_message": "",
                "updated_at": now,
            }
            if provider_payment_id:
                updates["provider_payment_id"] = provider_payment_id
            transitioned = (
                Payment.objects.filter(pk=payment.pk)
                .exclude(status__in=Payment.FINAL_STATUSES)
                .update(**updates)
            )

            booking = _lock_queryset_if_possible(
                Booking.objects.select_related("experience").filter(pk=payment.booking_id),
                of=("self",),
            ).get()

            if not transitioned:
                logger.info(f"Payment {payment.pk} already settled, confirmation ignored")
                current = Payment.objects.only("status").get(pk=payment.pk)
                return SettlementOutcome(
                    payment_id=payment.pk,
                    booking_id=booking.pk,
                    transitioned=False,
                    payment_status=current.status,
                    booking_status=booking.status,
                )

            state = booking.to_domain()
            duplicate = (
                state.status == BookingStatus.CONFIRMED
                and booking.current_payment_id not in (None, payment.pk)
                and Payment.objects.filter(
                    pk=booking.current_payment_id, status=Payment.Status.SUCCEEDED
                ).exists()
            )
            if duplicate:
                logger.warning(
                    f"Payment {payment.pk} succeeded for booking {booking.pk}, "
                    f"which is already paid by {booking.current_payment_id}"
                )
            refund = duplicate or state.status == BookingStatus.CANCELLED
            if not refund and state.is_expired(now):
                _, inventory = load_session_inventory(
                    booking.session_id, lock=True, now=now, exclude_booking_id=booking.pk
                )
                if not inventory.can_reserve(booking.guests):
                    logger.warning(
                        f"Payment {payment.pk} arrived after booking {booking.pk} expired "
                        f"and the session is full"
                    )
                    state.cancel("expired")
                    refund = True

            state.payment_status = PaymentStatus.SUCCEEDED
            if not refund:
                state.confirm(payment_status=PaymentStatus.SUCCEEDED)
            booking.apply_domain(state)
            if not duplicate and booking.current_payment_id != payment.pk:
                booking.current_payment_id = payment.pk
                booking.save(update_fields=["current_payment", "updated_at"])
            uow.collect_events(state)

            payment_id, booking_id = payment.pk, booking.pk
            if refund:
                reason = "duplicate_payment" if duplicate else "booking_cancelled"
                uow.on_commit(lambda: self._refund_unapplied_payment(payment_id, reason))
            else:
                uow.on_commit(lambda: self.pipeline(booking_id, origin=origin))

        logger.info(
            f"Payment {payment.pk} succeeded; booking {booking.pk} is {booking.status}"
            + (" (refund scheduled)" if refund else "")
        )
        return SettlementOutcome(
            payment_id=payment.pk,
            booking_id=booking.pk,
            transitioned=True,
            payment_status=Payment.Status.SUCCEEDED,
            booking_status=booking.status,
            refund_scheduled=refund,
        )

    def _refund_unapplied_payment(self, payment_id, reason: str) -> None:
        try:
            self.refunder(payment_id, reason)
        except DomainError as e:
            Payment.objects.filter(pk=payment_id).update(
                error_code=MANUAL_REFUND_REQUIRED,
                error_message=e.message,
                updated_at=timezone.now(),
            )
            logger.error(f"Payment {payment_id} needs a manual refund: {e.message}")

    # ===== Failure =====

    def settle_failure(
        self,
        payment: Payment,
        *,
        error_code: str = "",
        error_message: str = "",
        abandoned: bool = False,
    ) -> bool:
        """
        Cancel an unsettled Payment. The booking stays PENDING; when the
        payer abandoned checkout its payment_status becomes CANCELLED.
        """
        now = timezone.now()
        with transaction.atomic():
            cancelled = (
                Payment.objects.filter(pk=payment.pk)
                .exclude(status__in=Payment.FINAL_STATUSES)
                .update(
                    status=Payment.Status.CANCELLED,
                    error_code=(error_code or "")[:64],
                    error_message=error_message or "",
                    updated_at=now,
                )
            )
            if cancelled and abandoned:
                Booking.objects.filter(
                    pk=payment.booking_id,
                    status=Booking.Status.PENDING,
                ).update(payment_status=Payment.Status.CANCELLED, updated_at=now)

        if cancelled:
            logger.info(f"Payment {payment.pk} cancelled ({error_code or 'no code'}): {error_message}")
        return bool(cancelled)

    def mark_processing(self, payment: Payment, *, provider_payment_id: Optional[str] = None) -> bool:
        updates = {"status": Payment.Status.PROCESSING, "updated_at": timezone.now()}
        if provider_payment_id:
            updates["provider_payment_id"] = provider_payment_id
        updated = (
            Payment.objects.filter(pk=payment.pk)
            .exclude(status__in=Payment.FINAL_STATUSES)
            .update(**updates)
        )
        return bool(updated)

    # ===== Capture =====

    def _capture_blocked_by(self, payment: Payment) -> Optional[str]:
        """Reason the booking can no longer take this payment, or None."""
        booking = Booking.objects.get(pk=payment.booking_id)
        if booking.status == Booking.Status.CANCELLED:
            return f"booking {booking.pk} is cancelled"
        if booking.status == Booking.Status.PENDING and booking.is_hold_expired:
            _, inventory = load_session_inventory(booking.session_id, exclude_booking_id=booking.pk)
            if not inventory.can_reserve(booking.guests):
                return f"hold of booking {booking.pk} expired and the session is full"
        return None

    def capture_and_settle(
        self,
        provider: str,
        provider_payment_id: str,
        *,
        booking_id=None,
        payment_id=None,
        query: Optional[Mapping] = None,
        origin: Optional[str] = None,
    ) -> SettlementOutcome:
        """
        Capture an approved order (PayPal) and settle the result.

        A Payment that is already settled is not captured again, and an
        order for a booking that can no longer be confirmed is never
        captured: the Payment is cancelled instead.
        """
        gateway = self.gateway_factory(provider)
        payment = self.resolve(
            provider,
            booking_id=booking_id,
            payment_id=payment_id,
            query=query,
            provider_payment_id=provider_payment_id,
        )
        if payment.is_settled:
            logger.info(f"Payment {payment.pk} already settled, capture skipped")
            return SettlementOutcome(
                payment_id=payment.pk,
                booking_id=payment.booking_id,
                transitioned=False,
                payment_status=payment.status,
                booking_status=Booking.objects.only("status").get(pk=payment.booking_id).status,
            )

        if gateway.requires_capture:
            blocked = self._capture_blocked_by(payment)
            if blocked:
                logger.warning(f"{provider} order {provider_payment_id} not captured: {blocked}")
                self.settle_failure(payment, error_code="BOOKING_CANCELLED", error_message=blocked)
                return SettlementOutcome(
                    payment_id=payment.pk,
                    booking_id=payment.booking_id,
                    transitioned=False,
                    payment_status=Payment.Status.CANCELLED,
                    booking_status=Booking.objects.only("status").get(pk=payment.booking_id).status,
                )
            try:
                result = gateway.capture(provider_payment_id)
            except DomainError as e:
                self.settle_failure(payment, error_code=e.code.value, error_message=e.message)
                raise
            if result.payment_id and _as_uuid(result.payment_id) != payment.pk:
                logger.error(
                    f"{provider} capture of {provider_payment_id} names payment {result.payment_id}, "
                    f"expected {payment.pk}"
                )
                raise ReconciliationAmbiguity("Captured order belongs to another payment")
            if result.booking_id and _as_uuid(result.booking_id) != payment.booking_id:
                logger.error(
                    f"{provider} capture of {provider_payment_id} names booking {result.booking_id}, "
                    f"expected {payment.booking_id}"
                )
                raise ReconciliationAmbiguity("Captured order belongs to another booking")
            if not result.succeeded:
                self.settle_failure(
                    payment,
                    error_code="CAPTURE_NOT_COMPLETED",
                    error_message=f"Capture status {result.raw_status or 'unknown'}",
                )
                return SettlementOutcome(
                    payment_id=payment.pk,
                    booking_id=payment.booking_id,
                    transitioned=False,
                    payment_status=Payment.Status.CANCELLED,
                    booking_status=Booking.objects.only("status").get(pk=payment.booking_id).status,
                )
            provider_payment_id = result.provider_payment_id or provider_payment_id

        return self.settle_success(payment, provider_payment_id=provider_payment_id, origin=origin)
