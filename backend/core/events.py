"""Domain events emitted by the integration lifecycle services.

Services return events alongside the entity they changed; the caller
dispatches them once the surrounding transaction commits, typically with
``get_event_dispatcher().dispatch(result.events)``. Nothing in this
package dispatches on the caller's behalf, and the maintenance commands
produce no events.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class IntegrationEvent:
    """Base event describing a change to an integration."""

    integration_id: str
    client_id: str
    name: str
    user_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_integration(cls, integration, **extra: Any) -> "IntegrationEvent":
        return cls(
            integration_id=integration.id,
            client_id=integration.client_id,
            name=integration.name,
            user_id=integration.user_id,
            **extra,
        )


@dataclass
class IntegrationCreated(IntegrationEvent):
    pass


@dataclass
class IntegrationUpdated(IntegrationEvent):
    changed_fields: list[str] = field(default_factory=list)


@dataclass
class IntegrationDeleted(IntegrationEvent):
    pass


@dataclass
class SecretsRotated(IntegrationEvent):
    new_secret_id: Optional[str] = None
    deactivated_count: int = 0


@dataclass
class LifecycleResult(Generic[T]):
    """An entity plus the domain events its change produced."""

    entity: T
    events: list[IntegrationEvent] = field(default_factory=list)


EventHandler = Callable[[IntegrationEvent], None]


class EventDispatcher:
    """Routes events to handlers subscribed by event type.

    Handlers subscribed to ``IntegrationEvent`` receive every event.
    A failing handler is logged and does not stop the others.
    """

    def __init__(self):
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def dispatch(self, events: Iterable[IntegrationEvent]) -> int:
        """Deliver events to their handlers.

        Returns:
            Number of successful handler invocations
        """
        delivered = 0
        for event in events:
            for event_type, handlers in self._handlers.items():
                if not isinstance(event, event_type):
                    continue
                for handler in handlers:
                    try:
                        handler(event)
                        delivered += 1
                    except Exception:
                        logger.exception(
                            "Event handler %s failed for %s",
                            getattr(handler, "__name__", handler),
                            type(event).__name__,
                        )
        return delivered


_ACTIVITY_MESSAGES = {
    IntegrationCreated: "Integration created",
    IntegrationUpdated: "Integration updated",
    IntegrationDeleted: "Integration deleted",
    SecretsRotated: "Integration secrets rotated",
}


def log_integration_activity(event: IntegrationEvent) -> None:
    """Write an audit line for an integration lifecycle event."""
    message = _ACTIVITY_MESSAGES.get(type(event), "Integration event")
    logger.info(
        message,
        extra={
            "integration_id": event.integration_id,
            "client_id": event.client_id,
            "integration_name": event.name,
            "user_id": event.user_id,
        },
    )


_dispatcher: Optional[EventDispatcher] = None


def get_event_dispatcher() -> EventDispatcher:
    """Process-wide dispatcher with the activity logger subscribed."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher()
        _dispatcher.subscribe(IntegrationEvent, log_integration_activity)
    return _dispatcher
