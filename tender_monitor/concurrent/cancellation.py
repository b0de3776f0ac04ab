"""
Cooperative cancellation token passed down the crawl call chain.
"""

import threading
import time
from typing import Optional


class CancellationToken:
    """
    One-shot cancellation flag.

    Setting the token is a request, not an interrupt: long running code
    checks ``is_cancelled()`` at its own checkpoints and unwinds. A child
    token also reports cancelled once its parent is cancelled.
    """

    PARENT_POLL_SECONDS = 0.05

    def __init__(self, reason: Optional[str] = None, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self.reason = reason
        self.parent = parent

    def child(self) -> "CancellationToken":
        """Create a token cancelled by either itself or this token."""
        return CancellationToken(parent=self)

    def cancel(self, reason: Optional[str] = None) -> None:
        if reason and not self._event.is_set():
            self.reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.parent is not None and self.parent.is_cancelled()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True early if cancelled."""
        if self.parent is None:
            return self._event.wait(timeout)

        deadline = time.monotonic() + timeout
        while not self.is_cancelled():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._event.wait(min(remaining, self.PARENT_POLL_SECONDS))
        return True

    def __repr__(self) -> str:
        state = "cancelled" if self.is_cancelled() else "active"
        return f"CancellationToken({state})"
