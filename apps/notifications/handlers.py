"""Domain event subscriptions that produce notifications."""

from __future__ import annotations

import logging
from functools import partial

from apps.bookings.domain.events import BookingCancelled, BookingConfirmed, BookingCreated

from .models import Channel, EventType
from .services import create_notification

logger = logging.getLogger(__name__)

ORGANIZER_BOOKINGS_HREF = "/dashboard/organizer/bookings"
EXPLORER_RESERVATIONS_HREF = "/dashboard/explorer/reservations"


def on_booking_created(event: BookingCreated, broker=None) -> None:
    create_notification(
        event.organizer_id,
        "New reservation",
        f"{event.guests} guest(s) reserved {event.experience_title} "
        f"({event.total_price} {event.currency}).",
        event_type=EventType.BOOKING_CREATED,
        channels=[Channel.TOAST, Channel.EMAIL],
        href=ORGANIZER_BOOKINGS_HREF,
        metadata={"bookingId": str(event.booking_id), "sessionId": str(event.session_id)},
        broker=broker,
    )


def on_booking_confirmed(event: BookingConfirmed, broker=None) -> None:
    create_notification(
        event.explorer_id,
        "Reservation confirmed",
        f"Your reservation for {event.experience_title} is confirmed.",
        event_type=EventType.BOOKING_CONFIRMED,
        channels=[Channel.TOAST, Channel.EMAIL],
        href=EXPLORER_RESERVATIONS_HREF,
        metadata={
            "bookingId": str(event.booking_id),
            "tickets": event.tickets_issued,
            "origin": event.origin,
        },
        broker=broker,
    )


def on_booking_cancelled(event: BookingCancelled, broker=None) -> None:
    if event.reason == "expired":
        title = "Reservation expired"
        message = f"Your hold on {event.experience_title} expired before payment."
    else:
        title = "Reservation cancelled"
        message = f"Your reservation for {event.experience_title} was cancelled."
    create_notification(
        event.explorer_id,
        title,
        message,
        event_type=EventType.BOOKING_CANCELLED,
        channels=[Channel.TOAST, Channel.EMAIL],
        href=EXPLORER_RESERVATIONS_HREF,
        metadata={"bookingId": str(event.booking_id), "reason": event.reason},
        broker=broker,
    )


def register_notification_handlers(bus, broker=None) -> None:
    for event_type, handler in (
        (BookingCreated, on_booking_created),
        (BookingConfirmed, on_booking_confirmed),
        (BookingCancelled, on_booking_cancelled),
    ):
        bus.register_event_handler(event_type, partial(handler, broker=broker))
