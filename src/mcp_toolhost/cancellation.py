"""Cooperative cancellation token passed alongside each tool call."""

import threading

from .errors import ToolCancelled


class CancelToken:
    """
    Signals that the caller no longer wants a tool's result.

    Backed by a ``threading.Event`` so it can be checked both from coroutines
    and from blocking tools running in worker threads. Tools that support
    cancellation poll ``cancelled`` or call ``raise_if_cancelled()`` between
    steps; others run to completion and their result is discarded.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def wait(self, timeout: float = None) -> bool:
        """Block until cancelled or until ``timeout`` elapses. Returns the cancelled state."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ToolCancelled(f"Tool call cancelled: {self.reason}")
