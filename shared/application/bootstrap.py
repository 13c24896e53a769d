"""Wires event handlers of every bounded context onto one message bus."""

from __future__ import annotations

from functools import lru_cache

from shared.application.message_bus import MessageBus


def build_message_bus(broker=None) -> MessageBus:
    """Create a bus with all domain event subscriptions registered.

    ``broker`` is the notification broker handed to the notification
    handlers; tests pass an in-memory one.
    """
    from apps.notifications.handlers import register_notification_handlers

    bus = MessageBus()
    register_notification_handlers(bus, broker=broker)
    return bus


@lru_cache(maxsize=1)
def get_message_bus() -> MessageBus:
    """Process-wide default bus, built lazily after Django apps are loaded."""
    return build_message_bus()
