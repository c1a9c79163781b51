"""
Helpers shared by the primitive configurations.

Configurations are frozen dataclasses validated in ``__post_init__``.
``ConfigMixin`` adds ``from_dict``, ``from_env`` and ``with_options`` on top
of the declared fields.
"""

from __future__ import annotations

import dataclasses
import os
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from fortify.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

T = TypeVar("T", bound="ConfigMixin")
E = TypeVar("E", bound=Enum)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def require(condition: bool, field: str, value: Any, message: str) -> None:
    """Raise ConfigurationError unless ``condition`` holds."""
    if not condition:
        raise ConfigurationError(f"{field} {message}", field=field, value=value)


def to_seconds(value: Any) -> Any:
    """Convert ``timedelta`` durations to float seconds."""
    if isinstance(value, timedelta):
        return value.total_seconds()
    return value


def _default_of(field: dataclasses.Field[Any]) -> Any:
    if field.default is not dataclasses.MISSING:
        return field.default
    if field.default_factory is not dataclasses.MISSING:
        return field.default_factory()
    return None


def _coerce(field: dataclasses.Field[Any], raw: str) -> Any:
    default = _default_of(field)
    try:
        if isinstance(default, bool):
            lowered = raw.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(raw)
        if isinstance(default, Enum):
            enum_cls = type(default)
            try:
                return enum_cls(raw.strip().lower())
            except ValueError:
                return enum_cls[raw.strip().upper()]
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (KeyError, ValueError):
        raise ConfigurationError(
            f"Cannot parse {field.name} from '{raw}'",
            field=field.name,
            value=raw,
        ) from None
    return raw


class ConfigMixin:
    """Construction helpers for frozen configuration dataclasses."""

    env_prefix = "FORTIFY_"

    @classmethod
    def default(cls: type[T]) -> T:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_dict(cls: type[T], values: Mapping[str, Any]) -> T:
        """Create configuration from structured values.

        Unknown keys are rejected; ``timedelta`` values become seconds.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        names = {f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
        unknown = sorted(set(values) - names)
        if unknown:
            raise ConfigurationError(
                f"Unknown {cls.__name__} option(s): {', '.join(unknown)}",
                field=unknown[0],
            )
        return cls(**{k: to_seconds(v) for k, v in values.items()})

    @classmethod
    def from_env(cls: type[T], prefix: str | None = None) -> T:
        """Create configuration from environment variables.

        Each scalar field ``foo_bar`` is read from ``<prefix>FOO_BAR``; fields
        without a matching variable keep their defaults.
        """
        prefix = prefix if prefix is not None else cls.env_prefix
        values: dict[str, Any] = {}
        for field in dataclasses.fields(cls):  # type: ignore[arg-type]
            if not isinstance(_default_of(field), (bool, int, float, str, Enum)):
                continue
            raw = os.getenv(f"{prefix}{field.name.upper()}")
            if raw is not None:
                values[field.name] = _coerce(field, raw)
        return cls(**values)

    def with_options(self: T, **changes: Any) -> T:
        """Return a validated copy with ``changes`` applied."""
        return dataclasses.replace(  # type: ignore[type-var]
            self, **{k: to_seconds(v) for k, v in changes.items()}
        )


def coerce_enum(enum_cls: type[E], value: Any, field: str) -> E:
    """Accept an enum member, its value or its member name."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        pass
    if isinstance(value, str) and value.upper() in enum_cls.__members__:
        return enum_cls[value.upper()]
    raise ConfigurationError(
        f"{field} must be one of {', '.join(m.name for m in enum_cls)}",
        field=field,
        value=value,
    )
