"""
Booking Domain Events

Published after the transaction that produced them commits. The
notification context subscribes to them (see apps.notifications.handlers).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Optional
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass
class BookingCreated(DomainEvent):
    """
    Event: A new PENDING booking was created

    Triggers:
    - Notify the organizer of the experience
    """
    event_type: ClassVar[str] = "BOOKING_CREATED"

    booking_id: UUID
    session_id: UUID
    experience_id: UUID
    experience_title: str
    explorer_id: int
    organizer_id: int
    guests: int
    total_price: Decimal
    currency: str


@dataclass
class BookingConfirmed(DomainEvent):
    """
    Event: Booking reached CONFIRMED and its side effects ran

    Emitted once per booking by the confirmation pipeline.
    """
    event_type: ClassVar[str] = "BOOKING_CONFIRMED"

    booking_id: UUID
    experience_id: UUID
    experience_title: str
    explorer_id: int
    organizer_id: int
    tickets_issued: int = 0
    origin: Optional[str] = None


@dataclass
class BookingCancelled(DomainEvent):
    """Event: Booking moved to CANCELLED (organizer, explorer or expiry)."""
    event_type: ClassVar[str] = "BOOKING_CANCELLED"

    booking_id: UUID
    experience_id: UUID
    experience_title: str
    explorer_id: int
    organizer_id: int
    reason: str
    previous_status: str
