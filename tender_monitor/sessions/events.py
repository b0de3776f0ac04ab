"""
Push-style feed of live session state.

Yields an INITIAL event, then an UPDATE and a HEARTBEAT every interval until
stopped. ``to_sse`` renders an event as a server-sent-events frame.
"""

import json
import threading
import time
from typing import Any, Dict, Iterator, Optional

from config import SessionConfig


class SessionEventStream:
    """Iterator over session snapshots for one reader."""

    def __init__(self, registry, interval: Optional[float] = None, max_events: Optional[int] = None):
        """
        Args:
            registry: SessionRegistry to read from
            interval: Seconds between updates, defaults to the heartbeat interval
            max_events: Stop after this many events (None streams until closed)
        """
        self.registry = registry
        self.interval = interval if interval is not None else SessionConfig().heartbeat_interval
        self.max_events = max_events
        self._closed = threading.Event()

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _sessions_event(self, event_type: str) -> Dict[str, Any]:
        return {
            "type": event_type,
            "timestamp": int(time.time() * 1000),
            "data": [session.to_dict() for session in self.registry.list_all()],
        }

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        sent = 0

        def budget_left() -> bool:
            return self.max_events is None or sent < self.max_events

        if self.closed or not budget_left():
            return
        yield self._sessions_event("INITIAL")
        sent += 1

        while budget_left() and not self._closed.wait(self.interval):
            yield self._sessions_event("UPDATE")
            sent += 1
            if not budget_left():
                break
            yield {"type": "HEARTBEAT", "timestamp": int(time.time() * 1000)}
            sent += 1


def to_sse(event: Dict[str, Any]) -> str:
    """Format an event as a ``data:`` frame."""
    return f"data: {json.dumps(event)}\n\n"
