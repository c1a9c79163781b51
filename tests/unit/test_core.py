"""Tests for clocks and event publishing."""

import pytest

from fortify.core import (
    SYSTEM_CLOCK,
    Clock,
    EventBuffer,
    EventPublisher,
    ManualClock,
    ResilienceEvent,
    SystemClock,
)


class PingEvent(ResilienceEvent):
    event_type: str = "PING"


class PongEvent(ResilienceEvent):
    event_type: str = "PONG"


class TestManualClock:
    """Tests for ManualClock."""

    def test_starts_at_given_time(self) -> None:
        """Test initial reading."""
        assert ManualClock().monotonic() == 0.0
        assert ManualClock(start=2.5).monotonic() == 2.5

    def test_advance(self) -> None:
        """Test advancing the clock."""
        clock = ManualClock()
        clock.advance(1.5)
        assert clock.monotonic() == 1.5
        assert clock.monotonic_ns() == 1_500_000_000

    def test_sleep_advances(self) -> None:
        """Test sleep moves time instead of blocking."""
        clock = ManualClock()
        clock.sleep(3.0)
        clock.sleep(0)
        assert clock.monotonic() == 3.0

    def test_cannot_go_backwards(self) -> None:
        """Test negative moves are rejected."""
        clock = ManualClock(start=5.0)
        with pytest.raises(ValueError):
            clock.advance(-1)
        with pytest.raises(ValueError):
            clock.set(4.0)
        clock.set(6.0)
        assert clock.monotonic() == 6.0

    def test_satisfies_protocol(self) -> None:
        """Test both clocks implement the Clock protocol."""
        assert isinstance(ManualClock(), Clock)
        assert isinstance(SystemClock(), Clock)
        assert isinstance(SYSTEM_CLOCK, Clock)


class TestSystemClock:
    """Tests for SystemClock."""

    def test_monotonic_is_non_decreasing(self) -> None:
        """Test readings never decrease."""
        clock = SystemClock()
        first = clock.monotonic_ns()
        second = clock.monotonic_ns()
        assert second >= first


class TestEventPublisher:
    """Tests for EventPublisher."""

    def test_publish_to_all_subscribers(self) -> None:
        """Test every subscriber receives the event in order."""
        publisher: EventPublisher[ResilienceEvent] = EventPublisher()
        received: list[str] = []
        publisher.on_event(lambda e: received.append("a:" + e.event_type))
        publisher.on_event(lambda e: received.append("b:" + e.event_type))

        publisher.publish(PingEvent(name="p"))

        assert received == ["a:PING", "b:PING"]

    def test_filter_by_type_string(self) -> None:
        """Test filtering by event_type string."""
        publisher: EventPublisher[ResilienceEvent] = EventPublisher()
        received: list[ResilienceEvent] = []
        publisher.subscribe("PONG", received.append)

        publisher.publish(PingEvent(name="p"))
        publisher.publish(PongEvent(name="p"))

        assert [e.event_type for e in received] == ["PONG"]

    def test_filter_by_class(self) -> None:
        """Test filtering by event class."""
        publisher: EventPublisher[ResilienceEvent] = EventPublisher()
        received: list[ResilienceEvent] = []
        publisher.subscribe(PingEvent, received.append)

        publisher.publish(PingEvent(name="p"))
        publisher.publish(PongEvent(name="p"))

        assert len(received) == 1
        assert isinstance(received[0], PingEvent)

    def test_unsubscribe(self) -> None:
        """Test the returned function removes the subscription."""
        publisher: EventPublisher[ResilienceEvent] = EventPublisher()
        received: list[ResilienceEvent] = []
        unsubscribe = publisher.subscribe(None, received.append)
        assert publisher.has_consumers

        unsubscribe()
        publisher.publish(PingEvent(name="p"))

        assert received == []
        assert not publisher.has_consumers

    def test_failing_consumer_does_not_stop_delivery(self) -> None:
        """Test a raising handler is skipped."""
        publisher: EventPublisher[ResilienceEvent] = EventPublisher()
        received: list[ResilienceEvent] = []

        def broken(event: ResilienceEvent) -> None:
            raise RuntimeError("consumer bug")

        publisher.on_event(broken)
        publisher.on_event(received.append)

        publisher.publish(PingEvent(name="p"))

        assert len(received) == 1

    def test_events_are_immutable(self) -> None:
        """Test events cannot be modified after creation."""
        event = PingEvent(name="p")
        with pytest.raises(Exception):
            event.name = "other"  # type: ignore[misc]
        assert "'p' PING" in str(event)


class TestEventBuffer:
    """Tests for EventBuffer."""

    def test_keeps_most_recent(self) -> None:
        """Test the buffer drops the oldest events."""
        buffer = EventBuffer(capacity=2)
        buffer(PingEvent(name="1"))
        buffer(PongEvent(name="2"))
        buffer(PingEvent(name="3"))

        assert len(buffer) == 2
        assert [e.name for e in buffer.events] == ["2", "3"]
        assert buffer.event_types() == ["PONG", "PING"]
        assert buffer.count("PING") == 1

    def test_clear(self) -> None:
        """Test clearing the buffer."""
        buffer = EventBuffer()
        buffer(PingEvent(name="1"))
        buffer.clear()
        assert len(buffer) == 0

    def test_invalid_capacity(self) -> None:
        """Test capacity must be positive."""
        with pytest.raises(ValueError):
            EventBuffer(capacity=0)
