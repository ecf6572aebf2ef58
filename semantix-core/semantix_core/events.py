"""
Notification Channel
====================
Typed, synchronous, in-process publish/subscribe for pipeline lifecycle
events.

Usage:
    from semantix_core.events import NotificationChannel, EventType

    channel = NotificationChannel()
    channel.subscribe(EventType.CIRCUIT_OPENED, lambda event: alert(event.data))
    channel.subscribe_all(audit_sink)
"""

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    """Lifecycle event names."""
    REQUEST_QUEUED = "request.queued"
    REQUEST_STARTED = "request.started"
    REQUEST_SUCCEEDED = "request.succeeded"
    REQUEST_FAILED = "request.failed"
    REQUEST_RETRY_SCHEDULED = "request.retry_scheduled"
    CIRCUIT_OPENED = "circuit.opened"
    CIRCUIT_CLOSED = "circuit.closed"
    CIRCUIT_HALF_OPENED = "circuit.half_opened"
    CIRCUIT_STATE_CHANGED = "circuit.state_changed"
    CIRCUIT_RESET = "circuit.reset"


@dataclass(frozen=True)
class Event:
    """A published notification."""
    type: EventType
    request_id: Optional[str] = None
    request: Any = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[Event], None]


class NotificationChannel:
    """
    Publish/subscribe channel.

    Delivery is synchronous, in publish order and at-most-once per publish.
    A handler that raises is logged and skipped; remaining handlers still
    run.
    """

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = {}
        self._wildcard: List[EventHandler] = []
        self._pending: Deque[Event] = deque()
        self._dispatching = False

    def subscribe(self, event_type: EventType, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        event_type = EventType(event_type)
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for every event type."""
        self._wildcard.append(handler)
        return lambda: self.unsubscribe(None, handler)

    def unsubscribe(self, event_type: Optional[EventType], handler: EventHandler) -> None:
        handlers = self._wildcard if event_type is None else self._handlers.get(EventType(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: Event) -> int:
        """
        Deliver an event; returns the number of handlers that succeeded.

        An event published from inside a handler is queued and delivered
        once the current event has reached every handler, so subscribers
        always see events in publish order. Queued events return 0.
        """
        self._pending.append(event)
        if self._dispatching:
            return 0

        self._dispatching = True
        delivered = 0
        try:
            while self._pending:
                current = self._pending.popleft()
                count = self._deliver(current)
                if current is event:
                    delivered = count
        finally:
            self._dispatching = False
        return delivered

    def _deliver(self, event: Event) -> int:
        delivered = 0
        handlers = list(self._handlers.get(event.type, ())) + list(self._wildcard)

        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "notification_handler_failed",
                    event_type=event.type.value,
                    request_id=event.request_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )
        return delivered

    def emit(
        self,
        event_type: EventType,
        request_id: Optional[str] = None,
        request: Any = None,
        **data: Any,
    ) -> Event:
        """Build and publish an event."""
        event = Event(
            type=EventType(event_type),
            request_id=request_id,
            request=request,
            data=data,
        )
        self.publish(event)
        return event

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is None:
            return sum(len(h) for h in self._handlers.values()) + len(self._wildcard)
        return len(self._handlers.get(EventType(event_type), ()))

    def clear(self) -> None:
        self._handlers.clear()
        self._wildcard.clear()
        self._pending.clear()
