"""
Metrics collection for fortify.

Aggregates primitive events into labelled counters, a circuit state gauge
and call-duration histograms, with a Prometheus text exporter.
"""

from __future__ import annotations

import statistics
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fortify.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from fortify.core.events import EventPublisher, ResilienceEvent

logger = get_logger(__name__)

_MAX_SAMPLES = 1000


@dataclass(frozen=True)
class MetricLabels:
    """Labels identifying one primitive.

    Attributes:
        kind: Primitive kind (circuit_breaker, bulkhead, rate_limiter, ...)
        name: Primitive name
    """

    kind: str
    name: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {"kind": self.kind, "name": self.name}

    def to_key(self) -> str:
        """Convert to Prometheus label text."""
        return f'kind="{self.kind}",name="{self.name}"'


@dataclass
class HistogramBuckets:
    """Histogram bucket configuration (seconds)."""

    boundaries: list[float] = field(
        default_factory=lambda: [
            0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0
        ]
    )

    def get_bucket(self, value: float) -> str:
        """Get bucket label for value."""
        for boundary in self.boundaries:
            if value <= boundary:
                return str(boundary)
        return "+Inf"


@dataclass
class MetricSnapshot:
    """Snapshot of the metrics of one primitive (or all, aggregated).

    Attributes:
        calls: Count per outcome (``success``, ``error``, ``not_permitted``, ...)
        state_transitions: Count per ``"FROM->TO"`` circuit transition
        state: Last observed circuit state, if any
        duration_samples: Recent call durations in seconds
    """

    calls: dict[str, int] = field(default_factory=dict)
    state_transitions: dict[str, int] = field(default_factory=dict)
    state: str | None = None
    duration_samples: list[float] = field(default_factory=list)

    def count(self, outcome: str) -> int:
        return self.calls.get(outcome, 0)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    @property
    def latency_p50_ms(self) -> float:
        """Get 50th percentile latency."""
        if not self.duration_samples:
            return 0.0
        return statistics.median(self.duration_samples) * 1000

    @property
    def latency_p99_ms(self) -> float:
        """Get 99th percentile latency."""
        if len(self.duration_samples) < 2:
            return self.latency_p50_ms
        return statistics.quantiles(self.duration_samples, n=100)[-1] * 1000

    @property
    def avg_latency_ms(self) -> float:
        """Get average latency."""
        if not self.duration_samples:
            return 0.0
        return statistics.mean(self.duration_samples) * 1000


class MetricsCollector:
    """Collects metrics from primitive event publishers.

    Thread-safe; every bound primitive feeds the collector from the thread
    that published the event.

    Example:
        >>> collector = MetricsCollector()
        >>> collector.bind_circuit_breaker(breaker)
        >>> breaker.execute(call_backend)
        >>> collector.get_snapshot(MetricLabels("circuit_breaker", "backend")).count("success")
        1
    """

    def __init__(self, histogram_buckets: HistogramBuckets | None = None) -> None:
        """Initialize collector.

        Args:
            histogram_buckets: Bucket configuration for call durations
        """
        self._lock = threading.Lock()
        self._buckets = histogram_buckets or HistogramBuckets()

        # Counters
        self._calls: dict[MetricLabels, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._transitions: dict[MetricLabels, dict[tuple[str, str], int]] = defaultdict(
            lambda: defaultdict(int)
        )

        # Gauges
        self._states: dict[MetricLabels, str] = {}

        # Histograms
        self._duration_samples: dict[MetricLabels, list[float]] = defaultdict(list)
        self._duration_buckets: dict[MetricLabels, dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )

        # Callbacks
        self._callbacks: list[Callable[[str, dict[str, Any]], None]] = []

    # Binding

    def bind(self, kind: str, publisher: EventPublisher[Any]) -> Callable[[], None]:
        """Feed every event of ``publisher`` into the collector.

        Args:
            kind: Primitive kind used as a label
            publisher: The primitive's event publisher

        Returns:
            A function that stops collection
        """

        def consume(event: ResilienceEvent) -> None:
            self.record_event(kind, event)

        return publisher.subscribe(None, consume)

    def bind_circuit_breaker(self, circuit_breaker: Any) -> Callable[[], None]:
        with self._lock:
            self._states[MetricLabels("circuit_breaker", circuit_breaker.name)] = (
                circuit_breaker.state.name
            )
        return self.bind("circuit_breaker", circuit_breaker.event_publisher)

    def bind_bulkhead(self, bulkhead: Any) -> Callable[[], None]:
        return self.bind("bulkhead", bulkhead.event_publisher)

    def bind_rate_limiter(self, rate_limiter: Any) -> Callable[[], None]:
        return self.bind("rate_limiter", rate_limiter.event_publisher)

    def bind_retry(self, retry: Any) -> Callable[[], None]:
        return self.bind("retry", retry.event_publisher)

    def bind_time_limiter(self, time_limiter: Any) -> Callable[[], None]:
        return self.bind("time_limiter", time_limiter.event_publisher)

    # Recording

    def record_event(self, kind: str, event: ResilienceEvent) -> None:
        """Record one primitive event."""
        labels = MetricLabels(kind, event.name)
        if event.event_type == "STATE_TRANSITION":
            from_state = event.from_state.name  # type: ignore[attr-defined]
            to_state = event.to_state.name  # type: ignore[attr-defined]
            self.record_state_transition(labels, from_state, to_state)
            return
        duration = getattr(event, "elapsed_duration", None)
        self.record_call(labels, event.event_type.lower(), duration)

    def record_call(
        self,
        labels: MetricLabels,
        outcome: str,
        duration: float | None = None,
    ) -> None:
        """Record a call outcome.

        Args:
            labels: Metric labels
            outcome: Outcome name, e.g. ``success`` or ``not_permitted``
            duration: Call duration in seconds, if measured
        """
        with self._lock:
            self._calls[labels][outcome] += 1
            if duration is not None:
                samples = self._duration_samples[labels]
                samples.append(duration)
                # Keep only the most recent samples per primitive
                if len(samples) > _MAX_SAMPLES:
                    del samples[: len(samples) - _MAX_SAMPLES]
                self._duration_buckets[labels][self._buckets.get_bucket(duration)] += 1

        self._notify(
            "call",
            {"labels": labels.to_dict(), "outcome": outcome, "duration": duration},
        )

    def record_state_transition(
        self, labels: MetricLabels, from_state: str, to_state: str
    ) -> None:
        """Record a circuit breaker state transition."""
        with self._lock:
            self._transitions[labels][(from_state, to_state)] += 1
            self._states[labels] = to_state

        self._notify(
            "state_transition",
            {"labels": labels.to_dict(), "from_state": from_state, "to_state": to_state},
        )

    # Reading

    def get_snapshot(self, labels: MetricLabels | None = None) -> MetricSnapshot:
        """Get current metrics snapshot.

        Args:
            labels: Primitive to report; all primitives aggregated if None
        """
        with self._lock:
            if labels is not None:
                return MetricSnapshot(
                    calls=dict(self._calls.get(labels, {})),
                    state_transitions={
                        f"{f}->{t}": n for (f, t), n in self._transitions.get(labels, {}).items()
                    },
                    state=self._states.get(labels),
                    duration_samples=list(self._duration_samples.get(labels, [])),
                )

            calls: dict[str, int] = defaultdict(int)
            for per_outcome in self._calls.values():
                for outcome, count in per_outcome.items():
                    calls[outcome] += count
            transitions: dict[str, int] = defaultdict(int)
            for per_transition in self._transitions.values():
                for (f, t), count in per_transition.items():
                    transitions[f"{f}->{t}"] += count
            return MetricSnapshot(
                calls=dict(calls),
                state_transitions=dict(transitions),
                duration_samples=[
                    s for samples in self._duration_samples.values() for s in samples
                ],
            )

    def get_all_labels(self) -> list[MetricLabels]:
        """Get every primitive seen so far."""
        with self._lock:
            seen = set(self._calls) | set(self._transitions) | set(self._states)
        return sorted(seen, key=lambda labels: (labels.kind, labels.name))

    def add_callback(self, callback: Callable[[str, dict[str, Any]], None]) -> None:
        """Add a callback for metric updates.

        Args:
            callback: Function called with (metric_type, data)
        """
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[str, dict[str, Any]], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify(self, metric_type: str, data: dict[str, Any]) -> None:
        for callback in self._callbacks:
            try:
                callback(metric_type, data)
            except Exception:
                logger.warning("Metrics callback failed", exc_info=True, metric_type=metric_type)

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._calls.clear()
            self._transitions.clear()
            self._states.clear()
            self._duration_samples.clear()
            self._duration_buckets.clear()

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: list[str] = []

        with self._lock:
            # Call counter
            lines.append("# HELP fortify_calls_total Calls by primitive and outcome")
            lines.append("# TYPE fortify_calls_total counter")
            for labels, per_outcome in self._calls.items():
                for outcome, count in sorted(per_outcome.items()):
                    lines.append(
                        f'fortify_calls_total{{{labels.to_key()},outcome="{outcome}"}} {count}'
                    )

            # Circuit state gauge
            lines.append("# HELP fortify_circuit_breaker_state Current circuit breaker state")
            lines.append("# TYPE fortify_circuit_breaker_state gauge")
            for labels, state in self._states.items():
                lines.append(
                    f'fortify_circuit_breaker_state{{name="{labels.name}",state="{state}"}} 1'
                )

            # Transition counter
            lines.append(
                "# HELP fortify_circuit_breaker_transitions_total Circuit breaker state transitions"
            )
            lines.append("# TYPE fortify_circuit_breaker_transitions_total counter")
            for labels, per_transition in self._transitions.items():
                for (from_state, to_state), count in sorted(per_transition.items()):
                    lines.append(
                        "fortify_circuit_breaker_transitions_total"
                        f'{{name="{labels.name}",from_state="{from_state}",'
                        f'to_state="{to_state}"}} {count}'
                    )

            # Duration histogram
            lines.append("# HELP fortify_call_duration_seconds Call duration")
            lines.append("# TYPE fortify_call_duration_seconds histogram")
            for labels, buckets in self._duration_buckets.items():
                cumulative = 0
                for boundary in self._buckets.boundaries:
                    cumulative += buckets.get(str(boundary), 0)
                    lines.append(
                        f'fortify_call_duration_seconds_bucket{{{labels.to_key()},le="{boundary}"}} {cumulative}'
                    )
                cumulative += buckets.get("+Inf", 0)
                lines.append(
                    f'fortify_call_duration_seconds_bucket{{{labels.to_key()},le="+Inf"}} {cumulative}'
                )

        return "\n".join(lines)


# Global metrics collector
_global_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector."""
    global _global_collector
    if _global_collector is None:
        _global_collector = MetricsCollector()
    return _global_collector


def set_metrics_collector(collector: MetricsCollector) -> None:
    """Set the global metrics collector."""
    global _global_collector
    _global_collector = collector
