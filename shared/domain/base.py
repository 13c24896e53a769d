"""
Base Domain Classes

Building blocks shared by the bounded contexts:
- Entity: object with identity, compared by id
- ValueObject: immutable, compared by value
- Aggregate: consistency boundary that records domain events
- DomainEvent: something that happened, published after commit
"""

from __future__ import annotations

from abc import ABC
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, List, Optional
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Entity(ABC):
    """
    Base class for all entities

    Two entities are equal if their IDs are equal.
    """
    id: UUID = field(default_factory=uuid4)

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return False
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable object without identity."""


@dataclass(eq=False)
class Aggregate(Entity):
    """
    Base class for aggregate roots

    Events recorded here are handed to the unit of work and published
    only after the surrounding transaction commits.
    """
    _events: List['DomainEvent'] = field(default_factory=list, repr=False, init=False)

    def add_event(self, event: 'DomainEvent'):
        self._events.append(event)

    def clear_events(self):
        self._events.clear()

    @property
    def events(self) -> List['DomainEvent']:
        """Copy of the recorded events."""
        return self._events.copy()


@dataclass(kw_only=True)
class DomainEvent:
    """
    Base class for domain events

    ``event_type`` is the stable name other contexts subscribe to
    (it doubles as the notification event type).
    """
    event_type: ClassVar[str] = "GENERAL"

    aggregate_id: Optional[UUID] = None
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        payload = {
            key: str(value) if isinstance(value, (UUID, datetime)) else value
            for key, value in asdict(self).items()
        }
        payload['event_type'] = self.event_type
        return payload
