"""
Telemetry module for fortify.

Provides structured logging, an event-to-log consumer and metrics
collection fed by primitive event publishers.
"""

from fortify.telemetry.logger import (
    EventLogger,
    FortifyLogger,
    JsonFormatter,
    LogContext,
    LogLevel,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from fortify.telemetry.metrics import (
    HistogramBuckets,
    MetricLabels,
    MetricsCollector,
    MetricSnapshot,
    get_metrics_collector,
    set_metrics_collector,
)

__all__ = [
    # Logger
    "EventLogger",
    "FortifyLogger",
    # Metrics
    "HistogramBuckets",
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "MetricLabels",
    "MetricSnapshot",
    "MetricsCollector",
    "TextFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "get_metrics_collector",
    "set_log_context",
    "set_metrics_collector",
]
