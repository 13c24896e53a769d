"""
Unit of Work Pattern

Wraps a database transaction and publishes the collected domain events
through the injected message bus only after the commit succeeds.
"""

from abc import ABC, abstractmethod
from typing import List
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):
    """Abstract Unit of Work pattern"""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        pass

    @abstractmethod
    def rollback(self):
        pass

    @abstractmethod
    def collect_events(self, aggregate):
        pass


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Django implementation of Unit of Work

    Usage:
        with DjangoUnitOfWork(bus) as uow:
            booking = Booking.objects.select_for_update().get(pk=booking_id)
            state = booking.to_domain()
            state.cancel(reason="organizer")
            booking.apply_domain(state)
            uow.collect_events(state)
        # events are published after commit
    """

    def __init__(self, bus=None):
        self._bus = bus
        self._events: List[DomainEvent] = []
        self._transaction = None
        self._after_commit: List = []

    def __enter__(self):
        self._transaction = transaction.atomic()
        self._transaction.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self._transaction:
                self._transaction.__exit__(exc_type, exc_val, exc_tb)

    def commit(self):
        """
        Schedule event publishing and follow-up callbacks

        Both run through transaction.on_commit(), so nothing is sent if
        the outer transaction rolls back.
        """
        logger.debug(f"Committing transaction with {len(self._events)} events")

        events = self._events.copy()
        self._events.clear()
        callbacks = self._after_commit.copy()
        self._after_commit.clear()

        if events:
            transaction.on_commit(lambda: self._publish_events(events))
        for callback in callbacks:
            transaction.on_commit(callback)

    def rollback(self):
        logger.warning(f"Rolling back transaction, discarding {len(self._events)} events")
        self._events.clear()
        self._after_commit.clear()

    def collect_events(self, aggregate):
        """Move recorded events from the aggregate into this unit of work."""
        if hasattr(aggregate, 'events'):
            new_events = aggregate.events
            if new_events:
                self._events.extend(new_events)
                aggregate.clear_events()
                logger.debug(
                    f"Collected {len(new_events)} events from "
                    f"{aggregate.__class__.__name__} (ID: {aggregate.id})"
                )

    def add_event(self, event: DomainEvent):
        self._events.append(event)

    def on_commit(self, callback):
        """Run ``callback`` after the transaction commits."""
        self._after_commit.append(callback)

    def _publish_events(self, events: List[DomainEvent]):
        bus = self._bus
        if bus is None:
            from shared.application.bootstrap import get_message_bus

            bus = get_message_bus()

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            bus.publish_events(events)
        except Exception as e:
            logger.error(f"Error publishing events: {e}", exc_info=True)
