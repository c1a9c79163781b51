"""
Cancellation tokens for blocking waits.

Bulkhead acquisition, rate-limiter waits and retry back-off sleeps accept a
``CancelToken``; cancelling it wakes the waiter, which then raises
``OperationCancelledError``.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from fortify.errors import OperationCancelledError
from fortify.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


class CancelReason(str, Enum):
    """Reasons for cancellation."""

    USER_REQUEST = "user_request"
    TIMEOUT = "timeout"
    SHUTDOWN = "shutdown"


@dataclass
class CancelState:
    """State of a cancellation token.

    Attributes:
        cancelled: Whether cancellation was requested
        reason: Reason for cancellation
        timestamp: Wall-clock time of cancellation
    """

    cancelled: bool = False
    reason: CancelReason | None = None
    timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CancelToken:
    """Thread-safe cancellation token.

    Example:
        >>> token = CancelToken()
        >>> worker = threading.Thread(
        ...     target=bulkhead.acquire_permission, kwargs={"cancel_token": token}
        ... )
        >>> token.cancel(CancelReason.USER_REQUEST)
    """

    def __init__(self) -> None:
        self._state = CancelState()
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._callbacks: list[Callable[[CancelReason], Any]] = []

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Args:
            reason: Reason for cancellation
            **metadata: Additional metadata

        Returns:
            True if cancellation was newly requested, False if already cancelled
        """
        with self._lock:
            if self._state.cancelled:
                return False
            self._state.cancelled = True
            self._state.reason = reason
            self._state.timestamp = time.time()
            self._state.metadata.update(metadata)
            callbacks = list(self._callbacks)

        self._event.set()

        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancel callback failed", reason=reason.value)

        return True

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._state.cancelled

    @property
    def reason(self) -> CancelReason | None:
        """Get cancellation reason."""
        return self._state.reason

    @property
    def state(self) -> CancelState:
        """Get full cancellation state."""
        return self._state

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or until ``timeout`` elapses.

        Returns:
            True if cancelled, False if the timeout occurred
        """
        return self._event.wait(timeout)

    def on_cancel(self, callback: Callable[[CancelReason], Any]) -> Callable[[], None]:
        """Register a callback invoked once on cancellation.

        If the token is already cancelled the callback runs immediately.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            already = self._state.cancelled
            if not already:
                self._callbacks.append(callback)

        if already and self._state.reason is not None:
            callback(self._state.reason)

        def remove() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        """Raise if cancellation was requested.

        Raises:
            OperationCancelledError: If cancellation was requested
        """
        if self._state.cancelled:
            raise OperationCancelledError(self._state.reason)

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self._state.cancelled})"
