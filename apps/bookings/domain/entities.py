"""
Booking Domain Entities

- BookingStatus: lifecycle states
- PaymentStatus: mirror of the current payment attempt
- BookingState: aggregate that owns the lifecycle transitions

The ORM model (apps.bookings.models.Booking) converts to and from
BookingState; every status change goes through this module.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from shared.domain.base import Aggregate, utcnow
from shared.domain.errors import IllegalTransition


class BookingStatus(Enum):
    """
    Booking Status Finite State Machine

    State transitions:
    - PENDING -> CONFIRMED (payment succeeded or organizer confirmed)
    - PENDING -> CANCELLED (explorer, organizer or hold expiry)
    - CONFIRMED -> CANCELLED (organizer cancelled)
    CANCELLED is terminal. Expiry of a PENDING hold is implicit: once
    expires_at has passed the booking stops counting toward capacity.
    """
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'


class PaymentStatus(Enum):
    REQUIRES_PAYMENT_METHOD = 'REQUIRES_PAYMENT_METHOD'
    REQUIRES_ACTION = 'REQUIRES_ACTION'
    PROCESSING = 'PROCESSING'
    SUCCEEDED = 'SUCCEEDED'
    CANCELLED = 'CANCELLED'
    REFUNDED = 'REFUNDED'


ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
}


def ensure_transition_allowed(current: BookingStatus, target: BookingStatus) -> None:
    if target in ALLOWED_TRANSITIONS[current]:
        return
    if current == BookingStatus.CANCELLED and target == BookingStatus.CONFIRMED:
        raise IllegalTransition("cancelled bookings cannot be reconfirmed")
    raise IllegalTransition(
        f"Cannot move booking from {current.value} to {target.value}"
    )


@dataclass(eq=False, kw_only=True)
class BookingState(Aggregate):
    """
    Booking Aggregate Root

    Key invariants:
    - expires_at is set only while PENDING
    - CANCELLED is terminal
    - a transition to the current status is a no-op and records no event
    """

    session_id: UUID
    experience_id: UUID
    experience_title: str
    explorer_id: int
    organizer_id: int
    guests: int
    status: BookingStatus = BookingStatus.PENDING
    payment_status: Optional[PaymentStatus] = None
    expires_at: Optional[datetime] = None
    cancellation_reason: str = ''

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.status != BookingStatus.PENDING or self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def counts_toward_capacity(self, now: Optional[datetime] = None) -> bool:
        if self.status == BookingStatus.CONFIRMED:
            return True
        return self.status == BookingStatus.PENDING and not self.is_expired(now)

    def confirm(self, payment_status: Optional[PaymentStatus] = None) -> bool:
        """
        Move to CONFIRMED (PENDING -> CONFIRMED)

        Returns False when the booking is already CONFIRMED. No event is
        recorded here: BOOKING_CONFIRMED comes from the confirmation
        pipeline so it is emitted once however the booking got confirmed.
        """
        if payment_status is not None:
            self.payment_status = payment_status
        if self.status == BookingStatus.CONFIRMED:
            return False
        ensure_transition_allowed(self.status, BookingStatus.CONFIRMED)
        self.status = BookingStatus.CONFIRMED
        self.expires_at = None
        return True

    def cancel(self, reason: str) -> bool:
        """
        Move to CANCELLED

        Events: BookingCancelled
        """
        if self.status == BookingStatus.CANCELLED:
            return False
        ensure_transition_allowed(self.status, BookingStatus.CANCELLED)

        from apps.bookings.domain.events import BookingCancelled

        previous = self.status
        self.status = BookingStatus.CANCELLED
        self.cancellation_reason = reason
        self.expires_at = None

        self.add_event(BookingCancelled(
            aggregate_id=self.id,
            booking_id=self.id,
            experience_id=self.experience_id,
            experience_title=self.experience_title,
            explorer_id=self.explorer_id,
            organizer_id=self.organizer_id,
            reason=reason,
            previous_status=previous.value,
        ))
        return True

    def request_status(self, target: BookingStatus, reason: str = '') -> bool:
        """
        Organizer-driven transition. Returns whether anything changed.

        Raises IllegalTransition for CANCELLED -> CONFIRMED and other
        moves outside ALLOWED_TRANSITIONS.
        """
        if target == self.status:
            return False
        if target == BookingStatus.CONFIRMED:
            return self.confirm()
        if target == BookingStatus.CANCELLED:
            return self.cancel(reason)
        ensure_transition_allowed(self.status, target)
        return False

    def __str__(self):
        return f"Booking {self.id} ({self.status.value})"
