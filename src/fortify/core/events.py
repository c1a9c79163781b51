"""
Per-primitive event publishing.

Events are immutable pydantic models. Each primitive owns an
``EventPublisher``; subscribers are stored as an immutable tuple that is
replaced on every change, so ``publish`` never takes a lock.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from fortify.telemetry.logger import get_logger

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResilienceEvent(BaseModel):
    """Base class of every event published by a primitive."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(description="Name of the publishing primitive")
    event_type: str = Field(description="Event type identifier")
    created_at: datetime = Field(default_factory=_utc_now, description="Creation time (UTC)")

    def __str__(self) -> str:
        return f"{self.created_at.isoformat()}: '{self.name}' {self.event_type}"


E = TypeVar("E", bound=ResilienceEvent)
EventHandler = Callable[[Any], None]


class EventPublisher(Generic[E]):
    """Synchronous publish/subscribe hub owned by one primitive.

    Handlers run on the publishing thread and must not block. A handler
    that raises is logged and skipped.

    Example:
        >>> publisher.subscribe("STATE_TRANSITION", print)
        >>> publisher.on_event(lambda event: print(event.event_type))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # (filter, handler); filter is None, an event_type string or a class
        self._subscribers: tuple[tuple[Any, EventHandler], ...] = ()

    @property
    def has_consumers(self) -> bool:
        """Check whether anything is subscribed."""
        return bool(self._subscribers)

    def subscribe(
        self,
        event_filter: str | type[ResilienceEvent] | None,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """Register ``handler`` for events matching ``event_filter``.

        Args:
            event_filter: An ``event_type`` string, an event class, or None
                for every event
            handler: Callable receiving the event

        Returns:
            A function that removes the subscription
        """
        entry = (event_filter, handler)
        with self._lock:
            self._subscribers = (*self._subscribers, entry)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers = tuple(s for s in self._subscribers if s is not entry)

        return unsubscribe

    def on_event(self, handler: EventHandler) -> EventPublisher[E]:
        """Register ``handler`` for every event.

        Returns:
            Self for chaining
        """
        self.subscribe(None, handler)
        return self

    def publish(self, event: E) -> None:
        """Deliver ``event`` to every matching subscriber."""
        for event_filter, handler in self._subscribers:
            if not self._matches(event_filter, event):
                continue
            try:
                handler(event)
            except Exception:
                logger.warning(
                    "Event consumer failed",
                    exc_info=True,
                    primitive=event.name,
                    event_type=event.event_type,
                )

    @staticmethod
    def _matches(event_filter: Any, event: ResilienceEvent) -> bool:
        if event_filter is None:
            return True
        if isinstance(event_filter, str):
            return event.event_type == event_filter
        return isinstance(event, event_filter)


class EventBuffer:
    """Bounded consumer keeping the most recent events.

    Example:
        >>> buffer = EventBuffer(capacity=100)
        >>> circuit_breaker.event_publisher.on_event(buffer)
        >>> [e.event_type for e in buffer.events]
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._lock = threading.Lock()
        self._events: deque[ResilienceEvent] = deque(maxlen=capacity)

    def __call__(self, event: ResilienceEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[ResilienceEvent]:
        """Buffered events, oldest first."""
        with self._lock:
            return list(self._events)

    def event_types(self) -> list[str]:
        """Buffered event types, oldest first."""
        return [e.event_type for e in self.events]

    def count(self, event_type: str) -> int:
        """Count buffered events of one type."""
        return sum(1 for e in self.events if e.event_type == event_type)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
