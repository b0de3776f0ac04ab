"""
Thread-safe data structures shared by the worker pool and session registry.
"""

import threading


class ThreadSafeCounter:
    """Thread-safe counter with atomic operations."""

    def __init__(self, initial_value: int = 0):
        """
        Initialize counter with initial value.

        Args:
            initial_value: Starting value for the counter
        """
        self._value = initial_value
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        """
        Atomically increment counter and return new value.

        Args:
            amount: Amount to increment by (default: 1)

        Returns:
            New counter value after increment
        """
        with self._lock:
            self._value += amount
            return self._value

    def decrement(self, amount: int = 1) -> int:
        """
        Atomically decrement counter and return new value.

        Args:
            amount: Amount to decrement by (default: 1)

        Returns:
            New counter value after decrement
        """
        with self._lock:
            self._value -= amount
            return self._value

    def get_value(self) -> int:
        """Get current counter value."""
        with self._lock:
            return self._value

    def set_value(self, value: int) -> int:
        """Set counter to specific value."""
        with self._lock:
            self._value = value
            return self._value


class HighWaterMark:
    """Tracks the current level of a resource and the highest level seen."""

    def __init__(self):
        self._current = 0
        self._peak = 0
        self._lock = threading.Lock()

    def enter(self) -> int:
        with self._lock:
            self._current += 1
            if self._current > self._peak:
                self._peak = self._current
            return self._current

    def leave(self) -> int:
        with self._lock:
            self._current -= 1
            return self._current

    @property
    def current(self) -> int:
        with self._lock:
            return self._current

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak
