"""
Booking Command Handlers

Use cases of the booking lifecycle. Each handler runs inside one
DjangoUnitOfWork so domain events are published only after commit.

Commands:
- CreateBookingCommand: reserve spots on a session (PENDING + hold)
- UpdateBookingStatusCommand: organizer confirms or cancels
- CancelBookingCommand: explorer cancels a PENDING booking
- ExpireBookingsCommand: cancel PENDING bookings whose hold ran out
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID
import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db.models import Q
from django.utils import timezone

from apps.bookings.domain.entities import BookingStatus, PaymentStatus
from apps.bookings.domain.events import BookingCreated
from apps.bookings.models import Booking
from apps.bookings.services import _lock_queryset_if_possible, load_session_inventory
from apps.experiences.models import Experience
from shared.application.uow import DjangoUnitOfWork
from shared.domain.errors import (
    AuthorizationError,
    IllegalTransition,
    NotFoundError,
    PendingBookingExists,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _default_pipeline(booking_id, origin=None):
    from apps.bookings.application.confirmation import run_booking_confirmation_side_effects

    return run_booking_confirmation_side_effects(booking_id, origin=origin)


def hold_duration() -> timedelta:
    return timedelta(minutes=getattr(settings, "BOOKING_HOLD_MINUTES", 20))


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    """Explorer asks for ``guests`` spots on a session of an experience."""
    explorer_id: int
    experience_id: UUID
    session_id: UUID
    guests: int
    notes: str = ''


@dataclass
class UpdateBookingStatusCommand:
    """Organizer sets CONFIRMED or CANCELLED on a booking of their experience."""
    organizer_id: int
    booking_id: UUID
    status: str
    reason: str = 'organizer'


@dataclass
class CancelBookingCommand:
    explorer_id: int
    booking_id: UUID
    reason: str = 'explorer'


@dataclass
class ExpireBookingsCommand:
    now: Optional[datetime] = None


@dataclass
class StatusUpdateResult:
    booking: Booking
    changed: bool
    events: list = field(default_factory=list)


# ===== Command Handlers =====

class CreateBookingHandler:
    """
    Handler for CreateBooking command

    The capacity check and the insert happen in one transaction while
    the session row is locked, so concurrent requests for the same
    session are serialized and cannot oversell it.
    """

    def __init__(self, bus=None):
        self.bus = bus

    def handle(self, command: CreateBookingCommand) -> Booking:
        logger.info(
            f"Creating booking for session {command.session_id}, "
            f"explorer {command.explorer_id}, guests {command.guests}"
        )

        if isinstance(command.guests, bool) or not isinstance(command.guests, int) or command.guests < 1:
            raise ValidationError("Guest count must be a positive integer")

        explorer = get_user_model().objects.filter(pk=command.explorer_id).first()
        if explorer is None or not explorer.is_explorer():
            raise AuthorizationError("Only explorers can make reservations")

        now = timezone.now()
        with DjangoUnitOfWork(self.bus) as uow:
            session, inventory = load_session_inventory(command.session_id, lock=True, now=now)
            experience = session.experience
            if str(session.experience_id) != str(command.experience_id):
                raise NotFoundError("Session not found for this experience")
            if experience.status != Experience.Status.PUBLISHED:
                raise NotFoundError("Experience not found")

            if command.guests > session.capacity:
                raise ValidationError(
                    f"Guest count ({command.guests}) exceeds session capacity ({session.capacity})"
                )

            existing = (
                Booking.objects.filter(
                    explorer_id=explorer.pk,
                    experience_id=experience.pk,
                    status=Booking.Status.PENDING,
                    expires_at__gt=now,
                )
                .only("id")
                .first()
            )
            if existing is not None:
                raise PendingBookingExists(existing.pk)

            inventory.reserve(command.guests)

            total = session.unit_price * command.guests
            booking = Booking.objects.create(
                explorer=explorer,
                experience=experience,
                session=session,
                guests=command.guests,
                status=Booking.Status.PENDING,
                total_price=total.amount,
                currency=total.currency,
                notes=command.notes or '',
                expires_at=now + hold_duration(),
            )

            uow.add_event(BookingCreated(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                session_id=session.pk,
                experience_id=experience.pk,
                experience_title=experience.title,
                explorer_id=explorer.pk,
                organizer_id=experience.organizer_id,
                guests=booking.guests,
                total_price=total.amount,
                currency=total.currency,
            ))

        logger.info(
            f"Booking created: {booking.booking_code} (ID: {booking.pk}), "
            f"{inventory.available_spots} spots left on session {session.pk}"
        )
        return booking


class UpdateBookingStatusHandler:
    """
    Handler for organizer status changes

    - CANCELLED -> CONFIRMED is rejected with IllegalTransition
    - requesting the current status changes nothing and emits nothing
    - CONFIRMED runs the confirmation pipeline after commit
    """

    ALLOWED_TARGETS = (BookingStatus.CONFIRMED, BookingStatus.CANCELLED)

    def __init__(self, bus=None, pipeline: Optional[Callable] = None):
        self.bus = bus
        self.pipeline = pipeline or _default_pipeline

    def handle(self, command: UpdateBookingStatusCommand) -> StatusUpdateResult:
        try:
            target = BookingStatus(command.status)
        except ValueError:
            raise ValidationError(f"Unknown booking status: {command.status}")
        if target not in self.ALLOWED_TARGETS:
            raise ValidationError("Status must be CONFIRMED or CANCELLED")

        now = timezone.now()
        with DjangoUnitOfWork(self.bus) as uow:
            queryset = _lock_queryset_if_possible(
                Booking.objects.select_related("experience").filter(
                    pk=command.booking_id,
                    experience__organizer_id=command.organizer_id,
                ),
                of=("self",),
            )
            booking = queryset.first()
            if booking is None:
                raise NotFoundError("Booking not found")

            state = booking.to_domain()
            if state.status == target:
                logger.info(f"Booking {booking.pk} already {target.value}, nothing to do")
                return StatusUpdateResult(booking=booking, changed=False)

            if target == BookingStatus.CONFIRMED and state.is_expired(now):
                _, inventory = load_session_inventory(
                    booking.session_id, lock=True, now=now, exclude_booking_id=booking.pk
                )
                inventory.reserve(booking.guests)

            state.request_status(target, reason=command.reason)
            booking.apply_domain(state)
            events = state.events
            uow.collect_events(state)

            if target == BookingStatus.CONFIRMED:
                booking_id = booking.pk
                uow.on_commit(lambda: self.pipeline(booking_id, origin="organizer"))

        logger.info(f"Organizer {command.organizer_id} set booking {booking.pk} to {target.value}")
        return StatusUpdateResult(booking=booking, changed=True, events=events)


class CancelBookingHandler:
    """Explorer cancels their own booking while it is still PENDING."""

    def __init__(self, bus=None):
        self.bus = bus

    def handle(self, command: CancelBookingCommand) -> Booking:
        logger.info(f"Cancelling booking {command.booking_id}, reason: {command.reason}")

        with DjangoUnitOfWork(self.bus) as uow:
            queryset = _lock_queryset_if_possible(
                Booking.objects.select_related("experience").filter(
                    pk=command.booking_id,
                    explorer_id=command.explorer_id,
                ),
                of=("self",),
            )
            booking = queryset.first()
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.status != Booking.Status.PENDING:
                raise IllegalTransition("Only pending bookings can be cancelled")

            state = booking.to_domain()
            state.cancel(command.reason)
            booking.apply_domain(state)
            uow.collect_events(state)

        logger.info(f"Booking {booking.booking_code} cancelled by explorer")
        return booking


class ExpireBookingsHandler:
    """
    Sweeper for PENDING holds past expires_at

    Capacity accounting already ignores these bookings; the sweep only
    makes the final status visible. Bookings whose payment already
    SUCCEEDED are left for reconciliation.
    """

    def __init__(self, bus=None):
        self.bus = bus

    def handle(self, command: ExpireBookingsCommand) -> int:
        now = command.now or timezone.now()
        candidate_ids = list(
            Booking.objects.expired_holds(now)
            .filter(~Q(payment_status=PaymentStatus.SUCCEEDED.value) | Q(payment_status__isnull=True))
            .values_list("pk", flat=True)
        )

        expired = 0
        for booking_id in candidate_ids:
            with DjangoUnitOfWork(self.bus) as uow:
                booking = _lock_queryset_if_possible(
                    Booking.objects.select_related("experience").filter(pk=booking_id),
                    of=("self",),
                ).first()
                if booking is None:
                    continue
                state = booking.to_domain()
                if not state.is_expired(now) or state.payment_status == PaymentStatus.SUCCEEDED:
                    continue
                state.cancel("expired")
                booking.apply_domain(state)
                uow.collect_events(state)
                expired += 1

        if expired:
            logger.info(f"Expired {expired} pending bookings")
        return expired
