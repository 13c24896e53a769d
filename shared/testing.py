"""Factories shared by the test suites of every app."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from itertools import count

from django.utils import timezone  # type: ignore

from apps.experiences.models import Experience, ExperienceSession
from apps.users.models import User

_sequence = count(1)


def make_user(role: str = User.RoleChoices.EXPLORER, email: str | None = None, **extra) -> User:
    email = email or f"{role.lower()}{next(_sequence)}@example.com"
    return User.objects.create_user(email=email, password="TestPass123", role=role, **extra)


def make_experience(organizer: User | None = None, **extra) -> Experience:
    fields = {
        "title": "Sunset kayak tour",
        "description": "Two hours along the coast.",
        "price": Decimal("250.00"),
        "currency": "MAD",
        "status": Experience.Status.PUBLISHED,
    }
    fields.update(extra)
    return Experience.objects.create(
        organizer=organizer or make_user(User.RoleChoices.ORGANIZER),
        **fields,
    )


def make_session(experience: Experience | None = None, capacity: int = 10, **extra) -> ExperienceSession:
    return ExperienceSession.objects.create(
        experience=experience or make_experience(),
        start_at=extra.pop("start_at", timezone.now() + timedelta(days=7)),
        capacity=capacity,
        **extra,
    )
