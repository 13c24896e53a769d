"""Ticket issuance."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import List

from django.db import IntegrityError, transaction  # type: ignore

from .models import Ticket

logger = logging.getLogger(__name__)

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits)) or "0"


def generate_ticket_code() -> str:
    """T-<base36 millis>-<random>, upper-cased."""
    return f"T-{_base36(int(time.time() * 1000))}-{secrets.token_hex(3)}".upper()


@dataclass
class TicketIssue:
    tickets: List[Ticket]
    created: bool


def issue_tickets_for_booking(booking) -> TicketIssue:
    """One ticket per guest seat. Existing tickets are returned untouched."""

    existing = list(Ticket.objects.filter(booking=booking).order_by("seat_number"))
    if existing:
        return TicketIssue(tickets=existing, created=False)

    try:
        with transaction.atomic():
            tickets = Ticket.objects.bulk_create(
                [
                    Ticket(booking=booking, code=generate_ticket_code(), seat_number=seat)
                    for seat in range(1, booking.guests + 1)
                ]
            )
    except IntegrityError:
        # A concurrent run issued them first.
        existing = list(Ticket.objects.filter(booking=booking).order_by("seat_number"))
        return TicketIssue(tickets=existing, created=False)

    logger.info(f"Issued {len(tickets)} tickets for booking {booking.pk}")
    return TicketIssue(tickets=tickets, created=True)
