"""
Named registries of primitives.

A registry creates a primitive the first time it is requested by name and
returns the same instance afterwards. Entries are only removed explicitly.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from fortify.core.events import EventPublisher, ResilienceEvent
from fortify.errors import ConfigurationError
from fortify.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = get_logger(__name__)

E = TypeVar("E")
C = TypeVar("C")

DEFAULT_CONFIG = "default"


class EntryAddedEvent(ResilienceEvent):
    """A new entry was created in a registry."""

    event_type: str = "ENTRY_ADDED"
    entry: Any = None


class EntryRemovedEvent(ResilienceEvent):
    """An entry was removed from a registry."""

    event_type: str = "ENTRY_REMOVED"
    entry: Any = None


class EntryReplacedEvent(ResilienceEvent):
    """An entry was swapped for a new instance."""

    event_type: str = "ENTRY_REPLACED"
    old_entry: Any = None
    new_entry: Any = None


class RegistryEventPublisher(EventPublisher[ResilienceEvent]):
    """Registry lifecycle channels."""

    def on_entry_added(self, handler: Any) -> RegistryEventPublisher:
        self.subscribe(EntryAddedEvent, handler)
        return self

    def on_entry_removed(self, handler: Any) -> RegistryEventPublisher:
        self.subscribe(EntryRemovedEvent, handler)
        return self

    def on_entry_replaced(self, handler: Any) -> RegistryEventPublisher:
        self.subscribe(EntryReplacedEvent, handler)
        return self


class Registry(Generic[E, C]):
    """Thread-safe name -> primitive mapping with shared configurations.

    Subclasses set ``config_class`` and implement ``_create_entry``.

    Example:
        >>> registry = CircuitBreakerRegistry.of_config(config)
        >>> breaker = registry.get("backend")
        >>> breaker is registry.get("backend")
        True
    """

    config_class: ClassVar[type[Any]]
    kind: ClassVar[str] = "entry"

    def __init__(
        self,
        default_config: C | None = None,
        configurations: Mapping[str, C] | None = None,
    ) -> None:
        """Initialize registry.

        Args:
            default_config: Configuration used when ``get`` receives none
            configurations: Additional named, shareable configurations
        """
        self._lock = threading.RLock()
        self._entries: dict[str, E] = {}
        self._configurations: dict[str, C] = dict(configurations or {})
        self._configurations[DEFAULT_CONFIG] = (
            default_config if default_config is not None else self.config_class.default()
        )
        self._event_publisher = RegistryEventPublisher()

    @classmethod
    def of_config(cls, default_config: C) -> Registry[E, C]:
        """Create a registry whose entries default to ``default_config``."""
        return cls(default_config)

    @classmethod
    def of_defaults(cls) -> Registry[E, C]:
        """Create a registry using the default configuration."""
        return cls()

    def _create_entry(self, name: str, config: C) -> E:
        raise NotImplementedError

    @property
    def default_config(self) -> C:
        return self._configurations[DEFAULT_CONFIG]

    @property
    def event_publisher(self) -> RegistryEventPublisher:
        return self._event_publisher

    def add_configuration(self, name: str, config: C) -> None:
        """Register a named configuration for later ``get`` calls.

        Raises:
            ConfigurationError: If ``name`` is the reserved default name
        """
        if name == DEFAULT_CONFIG:
            raise ConfigurationError(
                "The default configuration cannot be overwritten",
                field="name",
                value=name,
            )
        with self._lock:
            self._configurations[name] = config

    def get_configuration(self, name: str) -> C | None:
        with self._lock:
            return self._configurations.get(name)

    def _resolve_config(self, config: C | str | None) -> C:
        if config is None:
            return self.default_config
        if isinstance(config, str):
            resolved = self.get_configuration(config)
            if resolved is None:
                raise ConfigurationError(
                    f"Configuration '{config}' is not registered",
                    field="config",
                    value=config,
                )
            return resolved
        return config

    def get(self, name: str, config: C | str | None = None) -> E:
        """Return the entry for ``name``, creating it if absent.

        Args:
            name: Entry name
            config: Configuration (or configuration name) used on creation;
                ignored when the entry already exists

        Returns:
            The registered entry
        """
        entry = self._entries.get(name)
        if entry is not None:
            return entry

        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                entry = self._create_entry(name, self._resolve_config(config))
                self._entries[name] = entry
                created = True
            else:
                created = False

        if created:
            logger.debug("Registry entry created", kind=self.kind, entry=name)
            self._event_publisher.publish(EntryAddedEvent(name=name, entry=entry))
        return entry

    def add(self, name: str, config: C | str | None = None) -> E:
        """Create an entry with a specific configuration.

        Raises:
            ConfigurationError: If an entry named ``name`` already exists
        """
        with self._lock:
            if name in self._entries:
                raise ConfigurationError(
                    f"{self.kind} '{name}' is already registered",
                    field="name",
                    value=name,
                )
            entry = self._create_entry(name, self._resolve_config(config))
            self._entries[name] = entry

        logger.debug("Registry entry added", kind=self.kind, entry=name)
        self._event_publisher.publish(EntryAddedEvent(name=name, entry=entry))
        return entry

    def find(self, name: str) -> E | None:
        """Return the entry for ``name`` without creating it."""
        return self._entries.get(name)

    def remove(self, name: str) -> E | None:
        """Remove and return the entry for ``name``, if present."""
        with self._lock:
            entry = self._entries.pop(name, None)

        if entry is not None:
            logger.debug("Registry entry removed", kind=self.kind, entry=name)
            self._event_publisher.publish(EntryRemovedEvent(name=name, entry=entry))
        return entry

    def replace(self, name: str, new_entry: E) -> E | None:
        """Swap the entry for ``name``; returns the old entry, if any."""
        with self._lock:
            if name not in self._entries:
                return None
            old_entry = self._entries[name]
            self._entries[name] = new_entry

        logger.debug("Registry entry replaced", kind=self.kind, entry=name)
        self._event_publisher.publish(
            EntryReplacedEvent(name=name, old_entry=old_entry, new_entry=new_entry)
        )
        return old_entry

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def all_entries(self) -> list[E]:
        with self._lock:
            return [self._entries[n] for n in sorted(self._entries)]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(entries={self.names()})"
