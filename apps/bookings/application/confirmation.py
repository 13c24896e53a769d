"""
Confirmation side-effect pipeline

Runs after a booking reaches CONFIRMED, whichever path got it there
(payment settlement, cash checkout, organizer confirmation):

1. issue tickets (reuses tickets that already exist)
2. claim ``side_effects_processed_at`` with a conditional update
3. only the claiming call publishes BookingConfirmed

Calling it again for the same booking changes nothing. Failures are
logged and never undo the confirmation.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import logging

from django.utils import timezone

from apps.bookings.domain.events import BookingConfirmed
from apps.bookings.models import Booking

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationReport:
    booking_id: object
    executed: bool
    tickets: int = 0
    reason: str = ''


def _issue_tickets(booking):
    from apps.tickets.services import issue_tickets_for_booking

    return issue_tickets_for_booking(booking)


def run_booking_confirmation_side_effects(
    booking_id,
    origin: Optional[str] = None,
    *,
    bus=None,
    ticket_issuer: Optional[Callable] = None,
) -> ConfirmationReport:
    booking = Booking.objects.select_related("experience").filter(pk=booking_id).first()
    if booking is None:
        logger.warning(f"Confirmation side effects skipped: booking {booking_id} not found")
        return ConfirmationReport(booking_id=booking_id, executed=False, reason="not_found")

    if booking.status != Booking.Status.CONFIRMED:
        logger.info(
            f"Confirmation side effects skipped: booking {booking_id} is {booking.status}"
        )
        return ConfirmationReport(booking_id=booking_id, executed=False, reason="not_confirmed")

    tickets = 0
    try:
        issue = (ticket_issuer or _issue_tickets)(booking)
        tickets = len(issue.tickets)
    except Exception as e:
        logger.error(f"Ticket issuance failed for booking {booking_id}: {e}", exc_info=True)

    claimed = Booking.objects.filter(
        pk=booking.pk,
        status=Booking.Status.CONFIRMED,
        side_effects_processed_at__isnull=True,
    ).update(side_effects_processed_at=timezone.now())
    if not claimed:
        logger.info(f"Confirmation side effects already ran for booking {booking_id}")
        return ConfirmationReport(booking_id=booking_id, executed=False, tickets=tickets, reason="already_processed")

    if bus is None:
        from shared.application.bootstrap import get_message_bus

        bus = get_message_bus()

    experience = booking.experience
    try:
        bus.publish_events([
            BookingConfirmed(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                experience_id=experience.pk,
                experience_title=experience.title,
                explorer_id=booking.explorer_id,
                organizer_id=experience.organizer_id,
                tickets_issued=tickets,
                origin=origin,
            )
        ])
    except Exception as e:
        logger.error(f"Confirmation notification failed for booking {booking_id}: {e}", exc_info=True)

    logger.info(f"Confirmation side effects done for booking {booking_id} (origin={origin})")
    return ConfirmationReport(booking_id=booking_id, executed=True, tickets=tickets)
