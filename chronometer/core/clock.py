"""Clocks - Sources of the current instant in epoch milliseconds.

Countdown targets are absolute instants, so every clock reports integer
milliseconds. Injecting a clock keeps the controller deterministic in tests.
"""

import threading
import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current instant."""

    def now_ms(self) -> int:
        """Return the current instant in milliseconds."""
        ...


class SystemClock:
    """Wall clock (milliseconds since the Unix epoch)."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000

    def __repr__(self) -> str:
        return "SystemClock()"


class MonotonicClock:
    """Monotonic clock, immune to wall-clock adjustments.

    Use when targets are expressed relative to process uptime rather than
    the epoch.
    """

    def now_ms(self) -> int:
        return time.monotonic_ns() // 1_000_000

    def __repr__(self) -> str:
        return "MonotonicClock()"


class ManualClock:
    """Clock that only moves when told to.

    Drives deterministic tests and simulations together with
    ManualScheduler.
    """

    def __init__(self, start_ms: int = 0):
        """Initialize manual clock.

        Args:
            start_ms: Initial instant in milliseconds.
        """
        self._now = int(start_ms)
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now

    def set(self, now_ms: int) -> None:
        """Jump to an absolute instant.

        Args:
            now_ms: New instant in milliseconds. May move backwards.
        """
        with self._lock:
            self._now = int(now_ms)

    def advance(self, delta_ms: int) -> int:
        """Move the clock forward.

        Args:
            delta_ms: Milliseconds to add (must not be negative).

        Returns:
            The new instant.

        Raises:
            ValueError: If delta_ms is negative.
        """
        if delta_ms < 0:
            raise ValueError("delta_ms must not be negative")
        with self._lock:
            self._now += int(delta_ms)
            return self._now

    def __repr__(self) -> str:
        return f"ManualClock({self._now})"


_default_clock: Clock = SystemClock()


def get_default_clock() -> Clock:
    """Get the process-wide default clock.

    Returns:
        The SystemClock instance shared by hosts that don't inject one.
    """
    return _default_clock
