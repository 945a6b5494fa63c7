"""In-process synchronous event bus for DadGPT.

Events are dispatched to registered handlers synchronously on publish().
Errors are isolated: one broken handler never crashes the bus, never
prevents the remaining handlers from running, and never reaches the
publisher.

The bus is an ordinary object. The entry point owns one instance and
threads it through the agent loop, session store and tools.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Handler type: plain function taking an Event
EventHandler = Callable[["Event"], None]


@dataclass
class Event:
    """A typed event flowing through the bus."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventBus:
    """Synchronous publish/subscribe with error isolation.

    Handlers for one event name are kept in registration order. publish()
    snapshots the handler list before dispatching, so subscribing or
    unsubscribing from inside a handler only affects later publishes.
    There is no queue and no backpressure: a slow handler delays the
    handlers after it.
    """

    def __init__(self) -> None:
        # dict keyed by registration token keeps insertion order and O(1) removal
        self._handlers: dict[str, dict[int, EventHandler]] = {}
        self._next_token = 0

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler. Returns a closure that unsubscribes it."""
        token = self._next_token
        self._next_token += 1
        self._handlers.setdefault(event_type, {})[token] = handler
        logger.debug(
            "Registered handler for '%s': %s",
            event_type,
            getattr(handler, "__qualname__", repr(handler)),
        )

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type)
            if handlers is None:
                return
            handlers.pop(token, None)
            if not handlers:
                self._handlers.pop(event_type, None)

        return unsubscribe

    def publish(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Event:
        """Build an Event and invoke every handler registered right now."""
        event = Event(type=event_type, data=data or {}, session_id=session_id)
        handlers = list(self._handlers.get(event_type, {}).values())
        for handler in handlers:
            self._safe_handle(handler, event)
        return event

    def clear(self) -> None:
        """Remove every handler for every event."""
        self._handlers.clear()

    def handler_count(self, event_type: str | None = None) -> int:
        """Number of handlers for one event type, or across all types."""
        if event_type is not None:
            return len(self._handlers.get(event_type, {}))
        return sum(len(h) for h in self._handlers.values())

    def _safe_handle(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception(
                "Handler %s failed for event %s",
                getattr(handler, "__qualname__", repr(handler)),
                event.type,
            )
