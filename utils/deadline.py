from __future__ import annotations

import threading
import time

from services.errors import DeadlineExceeded


class Deadline:
    """
    Cancellation signal shared by everything working on one request.

    Expires after `timeout` seconds (None = never) or as soon as `cancel()`
    is called, whichever comes first. Safe to read from worker threads.
    """

    def __init__(self, timeout: float | None = None):
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        if self.cancelled:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        if self.cancelled:
            raise DeadlineExceeded("operation cancelled")
        if self.expired():
            raise DeadlineExceeded("deadline exceeded")
