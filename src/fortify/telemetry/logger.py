"""
Structured logging for fortify.

Provides context-aware logging with JSON and text output, plus an event
consumer that writes primitive events as structured log lines.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from fortify.core.events import EventPublisher, ResilienceEvent

# Context variable for call-scoped logging context
_log_context: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_logging_level(self) -> int:
        """Convert to standard logging level."""
        return getattr(logging, self.value)


@dataclass
class LogContext:
    """Call-scoped logging context.

    Attributes:
        request_id: Identifier of the call being protected
        trace_id: Distributed trace ID
        operation: Name of the decorated operation
        extra: Additional context fields
    """

    request_id: str | None = None
    trace_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        if self.request_id:
            result["request_id"] = self.request_id
        if self.trace_id:
            result["trace_id"] = self.trace_id
        if self.operation:
            result["operation"] = self.operation
        result.update(self.extra)
        return result

    def with_extra(self, **kwargs: Any) -> LogContext:
        """Create new context with additional fields."""
        return LogContext(
            request_id=self.request_id,
            trace_id=self.trace_id,
            operation=self.operation,
            extra={**self.extra, **kwargs},
        )


def get_log_context() -> LogContext:
    """Get current logging context."""
    data = _log_context.get()
    if not data:
        return LogContext()
    known = {k: data[k] for k in ("request_id", "trace_id", "operation") if k in data}
    extra = {k: v for k, v in data.items() if k not in known}
    return LogContext(**known, extra=extra)


def set_log_context(context: LogContext) -> None:
    """Set logging context for the current thread or task."""
    _log_context.set(context.to_dict())


def clear_log_context() -> None:
    """Clear logging context."""
    _log_context.set(None)


class JsonFormatter(logging.Formatter):
    """JSON log formatter."""

    def __init__(self, include_timestamp: bool = True) -> None:
        """Initialize formatter.

        Args:
            include_timestamp: Whether to include timestamp
        """
        super().__init__()
        self._include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self._include_timestamp:
            log_data["timestamp"] = time.strftime(
                "%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)
            ) + f".{int(record.msecs):03d}Z"

        context = get_log_context()
        if context_dict := context.to_dict():
            log_data["context"] = context_dict

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def __init__(self, include_context: bool = True) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self._include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as text."""
        result = super().format(record)

        fields: dict[str, Any] = {}
        if self._include_context:
            fields.update(get_log_context().to_dict())
        if hasattr(record, "extra_fields"):
            fields.update(record.extra_fields)
        if fields:
            result = f"{result} | " + " ".join(f"{k}={v}" for k, v in fields.items())

        return result


class FortifyLogger:
    """Logger for fortify with structured logging support.

    Example:
        >>> logger = FortifyLogger.get_logger("fortify.registry")
        >>> logger.debug("Entry created", registry="circuit_breaker", name="backend")
    """

    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _level: ClassVar[LogLevel] = LogLevel.INFO
    _formatter: ClassVar[logging.Formatter | None] = None
    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def configure(
        cls,
        level: LogLevel = LogLevel.INFO,
        format: str = "json",
        stream: Any = None,
    ) -> None:
        """Configure global logging settings.

        Args:
            level: Log level
            format: Output format ('json' or 'text')
            stream: Output stream (default: stderr)
        """
        cls._level = level

        if format == "json":
            cls._formatter = JsonFormatter()
        else:
            cls._formatter = TextFormatter()

        cls._handler = logging.StreamHandler(stream or sys.stderr)
        cls._handler.setFormatter(cls._formatter)
        cls._handler.setLevel(level.to_logging_level())

        for logger in cls._loggers.values():
            logger.handlers.clear()
            logger.addHandler(cls._handler)
            logger.setLevel(level.to_logging_level())

    @classmethod
    def get_logger(cls, name: str) -> FortifyLogger:
        """Get or create a logger.

        Args:
            name: Logger name

        Returns:
            Logger instance
        """
        if name not in cls._loggers:
            logger = logging.getLogger(name)
            logger.setLevel(cls._level.to_logging_level())

            if cls._handler:
                logger.handlers.clear()
                logger.addHandler(cls._handler)
            elif not logger.handlers:
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(TextFormatter())
                logger.addHandler(handler)

            logger.propagate = False
            cls._loggers[name] = logger

        return cls(cls._loggers[name])

    def __init__(self, logger: logging.Logger) -> None:
        """Initialize with underlying logger."""
        self._logger = logger

    def is_enabled_for(self, level: LogLevel) -> bool:
        """Check whether messages at ``level`` would be emitted."""
        return self._logger.isEnabledFor(level.to_logging_level())

    def _log(
        self, level: int, msg: str, exc_info: bool = False, **kwargs: Any
    ) -> None:
        """Internal log method."""
        extra = {"extra_fields": kwargs} if kwargs else {}
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, msg, exc_info=exc_info, **kwargs)

    def error(self, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, msg, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)


def get_logger(name: str) -> FortifyLogger:
    """Get a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return FortifyLogger.get_logger(name)


class EventLogger:
    """Writes every event of a primitive as a structured log line.

    Error-like events (errors, rejections, timeouts) are logged at WARNING,
    everything else at the configured level.

    Example:
        >>> EventLogger().attach(circuit_breaker.event_publisher)
    """

    _WARNING_MARKERS: ClassVar[tuple[str, ...]] = (
        "ERROR",
        "NOT_PERMITTED",
        "REJECTED",
        "FAILED",
        "TIMEOUT",
        "EXCEEDED",
    )

    def __init__(
        self,
        logger: FortifyLogger | None = None,
        level: LogLevel = LogLevel.INFO,
    ) -> None:
        self._logger = logger or get_logger("fortify.events")
        self._level = level

    def attach(self, publisher: EventPublisher) -> EventLogger:
        """Subscribe to all events of ``publisher``.

        Returns:
            Self for chaining
        """
        publisher.on_event(self)
        return self

    def __call__(self, event: ResilienceEvent) -> None:
        is_warning = any(m in event.event_type for m in self._WARNING_MARKERS)
        level = LogLevel.WARNING if is_warning else self._level
        if not self._logger.is_enabled_for(level):
            return
        fields = event.model_dump(exclude={"name", "event_type", "created_at"})
        self._logger._log(
            level.to_logging_level(),
            f"{event.event_type} on '{event.name}'",
            primitive=event.name,
            event_type=event.event_type,
            **fields,
        )
