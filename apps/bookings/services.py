"""Session inventory ledger.

Capacity is never stored as a counter: remaining spots are derived from
the bookings on a session every time they are needed. Callers that go on
to insert a booking must hold the session row lock (``lock=True``) inside
``transaction.atomic()`` so the read and the insert are one unit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Tuple

from django.core.exceptions import ValidationError as DjangoValidationError  # type: ignore
from django.db import transaction  # type: ignore
from django.db.models import Q, Sum  # type: ignore
from django.db.models.functions import Coalesce  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore
from django.utils import timezone  # type: ignore

from apps.bookings.domain.inventory import SessionInventory
from apps.bookings.models import Booking
from apps.experiences.models import ExperienceSession
from shared.domain.errors import NotFoundError

HOLDING_STATUSES: Tuple[str, ...] = (Booking.Status.PENDING, Booking.Status.CONFIRMED)


def _lock_queryset_if_possible(queryset, *, of=()):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update(of=of)
    except NotSupportedError:
        return queryset


def reserved_guests(
    session_id,
    statuses: Iterable[str] = HOLDING_STATUSES,
    *,
    now: Optional[datetime] = None,
    exclude_booking_id=None,
) -> int:
    """Sum of guests on the session for the given statuses.

    PENDING bookings only count while ``expires_at > now``.
    """
    now = now or timezone.now()
    queryset = Booking.objects.filter(session_id=session_id, status__in=list(statuses)).filter(
        Q(expires_at__gt=now) | ~Q(status=Booking.Status.PENDING)
    )
    if exclude_booking_id is not None:
        queryset = queryset.exclude(pk=exclude_booking_id)
    return queryset.aggregate(total=Coalesce(Sum("guests"), 0))["total"]


def available_spots(session: ExperienceSession, *, now: Optional[datetime] = None) -> int:
    return session.capacity - reserved_guests(session.pk, now=now)


def load_session_inventory(
    session_id,
    *,
    lock: bool = False,
    now: Optional[datetime] = None,
    exclude_booking_id=None,
) -> Tuple[ExperienceSession, SessionInventory]:
    """Load the session (optionally row-locked) and its capacity aggregate."""

    queryset = ExperienceSession.objects.select_related("experience")
    if lock:
        queryset = _lock_queryset_if_possible(queryset, of=("self",))
    try:
        session = queryset.get(pk=session_id)
    except (ExperienceSession.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError("Session not found")

    inventory = SessionInventory(
        id=session.pk,
        session_id=session.pk,
        capacity=session.capacity,
        reserved_guests=reserved_guests(session.pk, now=now, exclude_booking_id=exclude_booking_id),
    )
    return session, inventory
