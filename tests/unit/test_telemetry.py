"""Tests for telemetry module."""

import json
import logging

import pytest

from fortify.core import ManualClock
from fortify.errors import BulkheadFullError, CallNotPermittedError
from fortify.resilience import Bulkhead, BulkheadConfig, CircuitBreaker
from fortify.telemetry import (
    EventLogger,
    FortifyLogger,
    HistogramBuckets,
    JsonFormatter,
    LogContext,
    LogLevel,
    MetricLabels,
    MetricsCollector,
    MetricSnapshot,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    get_metrics_collector,
    set_log_context,
    set_metrics_collector,
)


class ListHandler(logging.Handler):
    """Handler keeping emitted records in memory."""

    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture(autouse=True)
def _reset_log_context():
    yield
    clear_log_context()


@pytest.fixture
def captured() -> ListHandler:
    """Capture records of a dedicated logger."""
    handler = ListHandler()
    logger = logging.getLogger("tests.fortify.events")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return handler


def make_record(msg: str = "Entry created", **extra_fields) -> logging.LogRecord:
    record = logging.LogRecord("fortify.registry", logging.INFO, __file__, 1, msg, None, None)
    if extra_fields:
        record.extra_fields = extra_fields
    return record


class TestLogContext:
    """Tests for LogContext."""

    def test_empty_context(self) -> None:
        """Test empty context."""
        assert LogContext().to_dict() == {}

    def test_context_with_fields(self) -> None:
        """Test context with fields."""
        ctx = LogContext(request_id="req-123", trace_id="trace-456", operation="fetch_user")
        assert ctx.to_dict() == {
            "request_id": "req-123",
            "trace_id": "trace-456",
            "operation": "fetch_user",
        }

    def test_context_with_extra(self) -> None:
        """Test context with extra fields."""
        ctx = LogContext(request_id="req-123").with_extra(tenant="acme", attempt=2)
        result = ctx.to_dict()
        assert result["request_id"] == "req-123"
        assert result["tenant"] == "acme"
        assert result["attempt"] == 2

    def test_set_and_get(self) -> None:
        """Test the context round-trips through the context variable."""
        set_log_context(LogContext(request_id="req-1", extra={"tenant": "acme"}))
        ctx = get_log_context()
        assert ctx.request_id == "req-1"
        assert ctx.extra == {"tenant": "acme"}

    def test_clear(self) -> None:
        """Test clearing the context."""
        set_log_context(LogContext(request_id="req-1"))
        clear_log_context()
        assert get_log_context().to_dict() == {}


class TestFormatters:
    """Tests for log formatters."""

    def test_json_formatter(self) -> None:
        """Test JSON output carries message, context and extra fields."""
        set_log_context(LogContext(request_id="req-9"))
        data = json.loads(JsonFormatter().format(make_record(registry="circuit_breaker")))

        assert data["level"] == "INFO"
        assert data["logger"] == "fortify.registry"
        assert data["message"] == "Entry created"
        assert data["context"] == {"request_id": "req-9"}
        assert data["registry"] == "circuit_breaker"
        assert data["timestamp"].endswith("Z")

    def test_json_formatter_without_timestamp(self) -> None:
        """Test timestamps can be left out."""
        data = json.loads(JsonFormatter(include_timestamp=False).format(make_record()))
        assert "timestamp" not in data
        assert "context" not in data

    def test_text_formatter(self) -> None:
        """Test text output appends key=value fields."""
        line = TextFormatter().format(make_record(name="backend"))
        assert "| INFO     | fortify.registry | Entry created | name=backend" in line

    def test_text_formatter_without_context(self) -> None:
        """Test the log context can be left out of text output."""
        set_log_context(LogContext(request_id="req-9"))
        line = TextFormatter(include_context=False).format(make_record())
        assert "req-9" not in line


class TestFortifyLogger:
    """Tests for FortifyLogger."""

    def test_get_logger(self) -> None:
        """Test getting a logger."""
        logger = get_logger("fortify.test")
        assert logger._logger.name == "fortify.test"
        assert get_logger("fortify.test")._logger is logger._logger

    def test_kwargs_become_extra_fields(self, captured: ListHandler) -> None:
        """Test keyword arguments are attached to the record."""
        logger = FortifyLogger(logging.getLogger("tests.fortify.events"))
        logger.info("Entry created", registry="bulkhead", name="db")

        record = captured.records[0]
        assert record.getMessage() == "Entry created"
        assert record.extra_fields == {"registry": "bulkhead", "name": "db"}

    def test_is_enabled_for(self, captured: ListHandler) -> None:
        """Test level checks follow the underlying logger."""
        logging.getLogger("tests.fortify.events").setLevel(logging.WARNING)
        logger = FortifyLogger(logging.getLogger("tests.fortify.events"))
        assert not logger.is_enabled_for(LogLevel.INFO)
        assert logger.is_enabled_for(LogLevel.ERROR)

    def test_log_level_conversion(self) -> None:
        """Test LogLevel maps onto logging levels."""
        assert LogLevel.DEBUG.to_logging_level() == logging.DEBUG
        assert LogLevel.WARNING.to_logging_level() == logging.WARNING


class TestEventLogger:
    """Tests for EventLogger."""

    def test_logs_circuit_breaker_events(self, captured: ListHandler, clock: ManualClock) -> None:
        """Test successes log at INFO and errors at WARNING."""
        breaker = CircuitBreaker("backend", clock=clock)
        EventLogger(FortifyLogger(logging.getLogger("tests.fortify.events"))).attach(
            breaker.event_publisher
        )

        breaker.execute(lambda: "ok")
        with pytest.raises(ConnectionError):
            breaker.execute(self._fail)

        success, error = captured.records
        assert success.levelno == logging.INFO
        assert success.getMessage() == "SUCCESS on 'backend'"
        assert success.extra_fields["primitive"] == "backend"
        assert success.extra_fields["elapsed_duration"] == 0.0
        assert error.levelno == logging.WARNING
        assert error.extra_fields["event_type"] == "ERROR"
        assert isinstance(error.extra_fields["error"], ConnectionError)

    def test_rejections_are_warnings(self, captured: ListHandler) -> None:
        """Test rejected calls log at WARNING."""
        bulkhead = Bulkhead("db", BulkheadConfig(max_concurrent_calls=1))
        EventLogger(
            FortifyLogger(logging.getLogger("tests.fortify.events")), level=LogLevel.DEBUG
        ).attach(bulkhead.event_publisher)

        bulkhead.acquire_permission()
        with pytest.raises(BulkheadFullError):
            bulkhead.acquire_permission()

        assert [r.levelno for r in captured.records] == [logging.DEBUG, logging.WARNING]
        assert captured.records[1].extra_fields["event_type"] == "CALL_REJECTED"

    def test_skips_disabled_levels(self, captured: ListHandler) -> None:
        """Test events below the logger's level are not formatted or emitted."""
        logging.getLogger("tests.fortify.events").setLevel(logging.WARNING)
        bulkhead = Bulkhead("db", BulkheadConfig(max_concurrent_calls=1))
        EventLogger(FortifyLogger(logging.getLogger("tests.fortify.events"))).attach(
            bulkhead.event_publisher
        )

        bulkhead.acquire_permission()
        with pytest.raises(BulkheadFullError):
            bulkhead.acquire_permission()

        assert [r.extra_fields["event_type"] for r in captured.records] == ["CALL_REJECTED"]

    @staticmethod
    def _fail() -> None:
        raise ConnectionError("backend down")


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_records_circuit_breaker_events(self, clock: ManualClock) -> None:
        """Test outcomes, transitions and state are collected."""
        collector = MetricsCollector()
        breaker = CircuitBreaker("backend", clock=clock)
        collector.bind_circuit_breaker(breaker)
        labels = MetricLabels("circuit_breaker", "backend")

        assert collector.get_snapshot(labels).state == "CLOSED"

        breaker.execute(lambda: "ok")
        with pytest.raises(ConnectionError):
            breaker.execute(TestEventLogger._fail)
        breaker.transition_to_open()
        with pytest.raises(CallNotPermittedError):
            breaker.execute(lambda: "ok")

        snapshot = collector.get_snapshot(labels)
        assert snapshot.count("success") == 1
        assert snapshot.count("error") == 1
        assert snapshot.count("not_permitted") == 1
        assert snapshot.state_transitions == {"CLOSED->OPEN": 1}
        assert snapshot.state == "OPEN"
        assert snapshot.duration_samples == [0.0, 0.0]

    def test_unbind(self) -> None:
        """Test the returned function stops collection."""
        collector = MetricsCollector()
        bulkhead = Bulkhead("db")
        unbind = collector.bind_bulkhead(bulkhead)

        bulkhead.execute(lambda: None)
        unbind()
        bulkhead.execute(lambda: None)

        snapshot = collector.get_snapshot(MetricLabels("bulkhead", "db"))
        assert snapshot.calls == {"call_permitted": 1, "call_finished": 1}

    def test_aggregate_snapshot(self) -> None:
        """Test the unlabelled snapshot sums every primitive."""
        collector = MetricsCollector()
        collector.record_call(MetricLabels("bulkhead", "db"), "call_rejected")
        collector.record_call(MetricLabels("bulkhead", "cache"), "call_rejected")
        collector.record_state_transition(MetricLabels("circuit_breaker", "a"), "CLOSED", "OPEN")

        snapshot = collector.get_snapshot()
        assert snapshot.count("call_rejected") == 2
        assert snapshot.state_transitions == {"CLOSED->OPEN": 1}
        assert snapshot.total_calls == 2

    def test_get_all_labels(self) -> None:
        """Test labels are listed sorted by kind and name."""
        collector = MetricsCollector()
        collector.record_call(MetricLabels("retry", "backend"), "retry")
        collector.record_call(MetricLabels("bulkhead", "db"), "call_permitted")
        assert collector.get_all_labels() == [
            MetricLabels("bulkhead", "db"),
            MetricLabels("retry", "backend"),
        ]

    def test_callbacks(self) -> None:
        """Test callbacks receive updates and failing ones are skipped."""
        collector = MetricsCollector()
        received: list[tuple[str, dict]] = []

        def broken(metric_type: str, data: dict) -> None:
            raise RuntimeError("sink down")

        collector.add_callback(broken)
        collector.add_callback(lambda t, d: received.append((t, d)))
        collector.record_call(MetricLabels("bulkhead", "db"), "call_permitted")

        assert received == [
            (
                "call",
                {
                    "labels": {"kind": "bulkhead", "name": "db"},
                    "outcome": "call_permitted",
                    "duration": None,
                },
            )
        ]

        collector.remove_callback(broken)
        collector.remove_callback(broken)

    def test_reset(self) -> None:
        """Test reset clears everything."""
        collector = MetricsCollector()
        collector.record_call(MetricLabels("bulkhead", "db"), "call_permitted", 0.2)
        collector.reset()
        assert collector.get_all_labels() == []
        assert collector.get_snapshot().total_calls == 0

    def test_prometheus_export(self) -> None:
        """Test Prometheus export."""
        collector = MetricsCollector()
        labels = MetricLabels("circuit_breaker", "backend")
        collector.record_call(labels, "success", 0.003)
        collector.record_call(labels, "error", 30.0)
        collector.record_state_transition(labels, "CLOSED", "OPEN")

        output = collector.to_prometheus()

        assert "# TYPE fortify_calls_total counter" in output
        assert 'fortify_calls_total{kind="circuit_breaker",name="backend",outcome="success"} 1' in output
        assert 'fortify_circuit_breaker_state{name="backend",state="OPEN"} 1' in output
        assert (
            'fortify_circuit_breaker_transitions_total{name="backend",'
            'from_state="CLOSED",to_state="OPEN"} 1'
        ) in output
        assert (
            'fortify_call_duration_seconds_bucket{kind="circuit_breaker",name="backend",le="0.005"} 1'
        ) in output
        assert (
            'fortify_call_duration_seconds_bucket{kind="circuit_breaker",name="backend",le="10.0"} 1'
        ) in output
        assert (
            'fortify_call_duration_seconds_bucket{kind="circuit_breaker",name="backend",le="+Inf"} 2'
        ) in output

    def test_global_collector(self) -> None:
        """Test the global collector can be replaced."""
        previous = get_metrics_collector()
        try:
            replacement = MetricsCollector()
            set_metrics_collector(replacement)
            assert get_metrics_collector() is replacement
        finally:
            set_metrics_collector(previous)


class TestMetricSnapshot:
    """Tests for MetricSnapshot."""

    def test_latency(self) -> None:
        """Test latency statistics in milliseconds."""
        snapshot = MetricSnapshot(duration_samples=[0.01, 0.02, 0.03])
        assert snapshot.latency_p50_ms == pytest.approx(20.0)
        assert snapshot.avg_latency_ms == pytest.approx(20.0)
        assert snapshot.latency_p99_ms >= snapshot.latency_p50_ms

    def test_empty(self) -> None:
        """Test an empty snapshot reports zeros."""
        snapshot = MetricSnapshot()
        assert snapshot.latency_p50_ms == 0.0
        assert snapshot.latency_p99_ms == 0.0
        assert snapshot.count("success") == 0


def test_histogram_buckets() -> None:
    """Test bucket selection."""
    buckets = HistogramBuckets(boundaries=[0.1, 1.0])
    assert buckets.get_bucket(0.05) == "0.1"
    assert buckets.get_bucket(1.0) == "1.0"
    assert buckets.get_bucket(3.0) == "+Inf"
