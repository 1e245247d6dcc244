"""Deadline and cancellation token threaded through every git invocation."""

from __future__ import annotations

import threading
import time

from .errors import SyncCancelledError, SyncTimeoutError


class Deadline:
    """Wall-clock budget for one sync or preview call.

    Args:
        seconds: Total budget; ``None`` means no deadline.
        cancel_event: Optional event another thread sets to abort the call.
    """

    def __init__(
        self,
        seconds: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._expires_at = (
            time.monotonic() + seconds if seconds is not None else None
        )
        self._cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def check(self) -> None:
        """Raise if the call was cancelled or ran out of time."""
        if self._cancel_event.is_set():
            raise SyncCancelledError("sync cancelled")
        if self._expires_at is not None and time.monotonic() >= self._expires_at:
            raise SyncTimeoutError("sync deadline exceeded")

    def remaining(self, cap: float | None = None) -> float | None:
        """Seconds left before the deadline, bounded by *cap*.

        Raises the same errors as ``check()`` when nothing is left.
        """
        self.check()
        if self._expires_at is None:
            return cap
        left = self._expires_at - time.monotonic()
        if cap is None:
            return left
        return min(cap, left)
