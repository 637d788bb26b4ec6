"""
Cooperative cancellation.

A token is checked by the workers once per loop iteration. In-flight
blocking device calls are never interrupted, so cancellation latency is
bounded by the current call's timeout.
"""

from threading import Event
from typing import Optional


class CancellationToken:
    """
    Cancellation flag with optional parent.

    A child token reports cancelled when either it or any ancestor has
    been cancelled. Cancelling a child leaves the parent untouched, which
    lets one session abort its own workers without stopping the process.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = Event()
        self._parent = parent

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def cancel(self) -> None:
        self._event.set()

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def wait(self, timeout: float) -> bool:
        """
        Sleep for up to `timeout` seconds.

        Returns:
            True if the token was cancelled before or during the wait
        """
        if self._parent is None:
            return self._event.wait(timeout)
        # Parent cancellation does not set our event, so poll in slices
        remaining = timeout
        while remaining > 0:
            if self.cancelled:
                return True
            step = min(remaining, 0.05)
            self._event.wait(step)
            remaining -= step
        return self.cancelled

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.cancelled}>"
