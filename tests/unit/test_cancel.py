"""Tests for cancel module."""

import threading

import pytest

from fortify.core import CancelReason, CancelToken
from fortify.errors import OperationCancelledError


class TestCancelToken:
    """Tests for CancelToken."""

    def test_initial_state(self) -> None:
        """Test initial token state."""
        token = CancelToken()
        assert token.is_cancelled is False
        assert token.reason is None

    def test_cancel(self) -> None:
        """Test cancellation."""
        token = CancelToken()
        result = token.cancel(CancelReason.USER_REQUEST)

        assert result is True
        assert token.is_cancelled is True
        assert token.reason == CancelReason.USER_REQUEST
        assert token.state.timestamp is not None

    def test_cancel_twice(self) -> None:
        """Test cancelling twice returns False."""
        token = CancelToken()
        first = token.cancel()
        second = token.cancel(CancelReason.SHUTDOWN)

        assert first is True
        assert second is False
        assert token.reason == CancelReason.USER_REQUEST

    def test_cancel_metadata(self) -> None:
        """Test metadata is stored with the state."""
        token = CancelToken()
        token.cancel(CancelReason.TIMEOUT, source="watchdog")
        assert token.state.metadata == {"source": "watchdog"}

    def test_callback(self) -> None:
        """Test cancel callbacks receive the reason."""
        token = CancelToken()
        reasons: list[CancelReason] = []
        token.on_cancel(reasons.append)

        token.cancel(CancelReason.SHUTDOWN)

        assert reasons == [CancelReason.SHUTDOWN]

    def test_callback_after_cancel_runs_immediately(self) -> None:
        """Test registering on a cancelled token runs the callback."""
        token = CancelToken()
        token.cancel()
        reasons: list[CancelReason] = []
        token.on_cancel(reasons.append)
        assert reasons == [CancelReason.USER_REQUEST]

    def test_remove_callback(self) -> None:
        """Test removed callbacks are not invoked."""
        token = CancelToken()
        reasons: list[CancelReason] = []
        remove = token.on_cancel(reasons.append)
        remove()
        token.cancel()
        assert reasons == []

    def test_failing_callback_does_not_stop_others(self) -> None:
        """Test a raising callback is logged and skipped."""
        token = CancelToken()
        reasons: list[CancelReason] = []

        def broken(reason: CancelReason) -> None:
            raise RuntimeError("bug")

        token.on_cancel(broken)
        token.on_cancel(reasons.append)
        token.cancel()

        assert reasons == [CancelReason.USER_REQUEST]

    def test_raise_if_cancelled(self) -> None:
        """Test raise_if_cancelled."""
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel(CancelReason.TIMEOUT)
        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == CancelReason.TIMEOUT

    def test_wait_times_out(self) -> None:
        """Test wait returns False when nothing cancels."""
        assert CancelToken().wait(0.01) is False

    def test_wait_wakes_on_cancel(self) -> None:
        """Test a waiting thread is woken by cancellation."""
        token = CancelToken()
        results: list[bool] = []
        waiter = threading.Thread(target=lambda: results.append(token.wait(5.0)))
        waiter.start()

        token.cancel()
        waiter.join(timeout=5.0)

        assert results == [True]
