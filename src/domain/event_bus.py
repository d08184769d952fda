"""
In-process event bus.

The unit of work publishes collected domain events here after commit.
Handlers are isolated from each other: a failing handler is logged and the
remaining handlers still run.
"""

import logging
from typing import Callable, Dict, List, Optional, Type

from .events import DomainEvent


logger = logging.getLogger(__name__)


# =============================================================================
# EVENT BUS
# =============================================================================

class EventBus:
    """
    Simple in-process event bus for publishing domain events.

    Events are delivered to all registered handlers for their type.
    """

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._global_handlers: List[Callable] = []

    def subscribe(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], None]
    ) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Type of event to subscribe to
            handler: Callback function to invoke
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed handler to {event_type.__name__}")

    def subscribe_all(self, handler: Callable[[DomainEvent], None]) -> None:
        """Subscribe to all events."""
        self._global_handlers.append(handler)
        logger.debug("Subscribed global handler")

    def publish(self, event: DomainEvent) -> None:
        """
        Publish an event to every handler of its type, then the global ones.

        Args:
            event: Event to publish
        """
        handlers = self._handlers.get(type(event), []) + self._global_handlers

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler: {e}", exc_info=True)


class LoggingEventHandler:
    """
    Event handler that logs all events.

    Provides the audit log line for every link change.
    """

    def __init__(self, logger_name: str = "domain.events"):
        self._logger = logging.getLogger(logger_name)

    def handle(self, event: DomainEvent) -> None:
        """
        Handle an event by logging it.

        Args:
            event: Event to log
        """
        self._logger.info(
            f"Event: {event.event_type.value}",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type.value,
                "aggregate_type": event.aggregate_type,
                "aggregate_id": event.aggregate_id,
                "actor_id": event.actor_id,
                "occurred_at": event.occurred_at.isoformat(),
            }
        )


# =============================================================================
# GLOBAL EVENT BUS INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global bus and its subscriptions. Used by tests."""
    global _event_bus
    _event_bus = None


def publish_event(event: DomainEvent) -> None:
    """Publish an event to the global event bus."""
    get_event_bus().publish(event)
