"""Root pytest fixtures for fortify tests."""

from __future__ import annotations

import pytest

from fortify.core import EventBuffer, ManualClock


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at t=0."""
    return ManualClock()


@pytest.fixture
def events() -> EventBuffer:
    """Event buffer large enough for a single test."""
    return EventBuffer(capacity=1000)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as waiting on real time",
    )
