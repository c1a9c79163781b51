"""
Core building blocks shared by every primitive.

- Clock: injectable monotonic time source
- EventPublisher: per-primitive publish/subscribe
- CancelToken: cancellation of blocking waits
- Registry: named lookup and creation
"""

from fortify.core.cancel import CancelReason, CancelState, CancelToken
from fortify.core.clock import SYSTEM_CLOCK, Clock, ManualClock, SystemClock
from fortify.core.config import ConfigMixin
from fortify.core.events import EventBuffer, EventPublisher, ResilienceEvent
from fortify.core.registry import (
    EntryAddedEvent,
    EntryRemovedEvent,
    EntryReplacedEvent,
    Registry,
    RegistryEventPublisher,
)

__all__ = [
    "SYSTEM_CLOCK",
    "CancelReason",
    "CancelState",
    "CancelToken",
    "Clock",
    "ConfigMixin",
    "EntryAddedEvent",
    "EntryRemovedEvent",
    "EntryReplacedEvent",
    "EventBuffer",
    "EventPublisher",
    "ManualClock",
    "Registry",
    "RegistryEventPublisher",
    "ResilienceEvent",
    "SystemClock",
]
