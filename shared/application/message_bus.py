"""
Message Bus

Routes commands and domain events to their handlers. The bus is built
once in ``shared.application.bootstrap`` and injected into command
handlers and the unit of work instead of living in a module global.
"""

from typing import Any, Callable, Dict, List, Type
import logging

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class MessageBus:
    """
    Message bus for commands and events

    Commands: One handler per command (1:1)
    Events: Multiple handlers per event (1:N)
    """

    def __init__(self):
        self._event_handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._command_handlers: Dict[Type, Callable] = {}

    def register_event_handler(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], None]
    ):
        self._event_handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered event handler for {event_type.__name__}")

    def register_command_handler(
        self,
        command_type: Type,
        handler: Callable[[Any], Any]
    ):
        """Only one handler can be registered per command type."""
        if command_type in self._command_handlers:
            raise ValueError(
                f"Handler for {command_type.__name__} is already registered. "
                "Commands can have only one handler."
            )
        self._command_handlers[command_type] = handler
        logger.debug(f"Registered command handler for {command_type.__name__}")

    def handle_command(self, command: Any) -> Any:
        command_type = type(command)
        handler = self._command_handlers.get(command_type)

        if not handler:
            raise ValueError(
                f"No handler registered for command {command_type.__name__}"
            )

        logger.info(f"Handling command: {command_type.__name__}")
        return handler(command)

    def publish_events(self, events: List[DomainEvent]):
        """
        Publish domain events

        Errors in handlers are logged and never reach the publisher: the
        transaction that produced the events is already committed.
        """
        for event in events:
            event_type = type(event)
            handlers = self._event_handlers.get(event_type, [])

            if not handlers:
                logger.warning(f"No handlers registered for event {event_type.__name__}")
                continue

            logger.info(f"Publishing event: {event.event_type} (ID: {event.event_id})")

            for handler in handlers:
                handler_name = getattr(handler, "__name__", None) or getattr(getattr(handler, "func", None), "__name__", repr(handler))
                try:
                    handler(event)
                except Exception as e:
                    logger.error(
                        f"Error in event handler {handler_name} "
                        f"for event {event_type.__name__}: {e}",
                        exc_info=True
                    )
