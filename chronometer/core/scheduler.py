"""Schedulers - Delayed callbacks for countdown ticks.

A scheduler runs a callback once after a delay and can cancel it before it
fires. Controllers keep at most one pending call, so the schedulers only
need one-shot semantics; the controller reschedules itself on every tick.

Implementations:
- ThreadingScheduler: threading.Timer per call (default host)
- AsyncioScheduler: loop.call_later on an asyncio event loop
- ManualScheduler: virtual time, driven by advance() (tests, simulations)
"""

import asyncio
import heapq
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from chronometer.core.clock import ManualClock

logger = logging.getLogger(__name__)

_call_ids = itertools.count(1)


@dataclass(eq=False)
class ScheduledCall:
    """Handle for a pending callback."""

    callback: Callable[[], None]
    delay_ms: int
    id: int = field(default_factory=lambda: next(_call_ids))
    cancelled: bool = False
    fired: bool = False
    _native: Any = field(default=None, repr=False)

    @property
    def pending(self) -> bool:
        """True until the call fires or is cancelled."""
        return not (self.cancelled or self.fired)


class Scheduler(ABC):
    """Abstract one-shot delayed-callback facility."""

    @abstractmethod
    def schedule_after(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledCall:
        """Run callback once after delay_ms milliseconds.

        Args:
            delay_ms: Delay in milliseconds (negative treated as 0).
            callback: Zero-argument callable.

        Returns:
            Handle accepted by cancel().
        """
        ...

    @abstractmethod
    def cancel(self, handle: ScheduledCall | None) -> bool:
        """Cancel a pending call.

        Args:
            handle: Handle from schedule_after (None is ignored).

        Returns:
            True if the call was pending and is now cancelled.
        """
        ...

    def _run(self, handle: ScheduledCall) -> None:
        """Fire a call unless it was cancelled in the meantime."""
        if not handle.pending:
            return
        handle.fired = True
        try:
            handle.callback()
        except Exception as e:
            logger.error("Scheduled callback %d error: %s", handle.id, e)


class ThreadingScheduler(Scheduler):
    """Scheduler backed by daemon threading.Timer objects.

    Callbacks run on timer threads, so the callee must guard its own state.
    """

    def __init__(self) -> None:
        self._pending: dict[int, ScheduledCall] = {}
        self._lock = threading.Lock()

    def schedule_after(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledCall:
        handle = ScheduledCall(callback=callback, delay_ms=max(0, int(delay_ms)))
        timer = threading.Timer(handle.delay_ms / 1000.0, self._execute, args=[handle])
        timer.daemon = True
        timer.name = f"chronometer-tick-{handle.id}"
        handle._native = timer

        with self._lock:
            self._pending[handle.id] = handle
        timer.start()
        return handle

    def _execute(self, handle: ScheduledCall) -> None:
        with self._lock:
            self._pending.pop(handle.id, None)
        self._run(handle)

    def cancel(self, handle: ScheduledCall | None) -> bool:
        if handle is None:
            return False
        with self._lock:
            if not handle.pending:
                return False
            handle.cancelled = True
            self._pending.pop(handle.id, None)
        handle._native.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel every pending call (call on shutdown)."""
        with self._lock:
            handles = list(self._pending.values())
            self._pending.clear()
            for handle in handles:
                handle.cancelled = True
        for handle in handles:
            handle._native.cancel()

    @property
    def pending_count(self) -> int:
        """Number of calls waiting to fire."""
        with self._lock:
            return len(self._pending)


class AsyncioScheduler(Scheduler):
    """Scheduler running callbacks on an asyncio event loop.

    Safe to call from other threads: scheduling from outside the loop is
    marshalled with call_soon_threadsafe.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        """Initialize asyncio scheduler.

        Args:
            loop: Target loop. Defaults to the running loop.
        """
        self._loop = loop or asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def schedule_after(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledCall:
        handle = ScheduledCall(callback=callback, delay_ms=max(0, int(delay_ms)))

        def arm() -> None:
            if handle.pending:
                handle._native = self._loop.call_later(
                    handle.delay_ms / 1000.0, self._run, handle
                )

        if self._on_loop_thread():
            arm()
        else:
            self._loop.call_soon_threadsafe(arm)
        return handle

    def cancel(self, handle: ScheduledCall | None) -> bool:
        if handle is None or not handle.pending:
            return False
        handle.cancelled = True
        if handle._native is not None:
            if self._on_loop_thread():
                handle._native.cancel()
            else:
                self._loop.call_soon_threadsafe(handle._native.cancel)
        return True


class ManualScheduler(Scheduler):
    """Virtual-time scheduler bound to a ManualClock.

    Nothing fires until advance() moves the clock past a call's due time.
    Calls fire in due order, with the clock set to each call's due instant.
    """

    def __init__(self, clock: ManualClock | None = None):
        """Initialize manual scheduler.

        Args:
            clock: Clock to drive. A new ManualClock at 0 if omitted.
        """
        self.clock = clock or ManualClock()
        self._queue: list[tuple[int, int, ScheduledCall]] = []
        self._lock = threading.RLock()

    def schedule_after(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledCall:
        handle = ScheduledCall(callback=callback, delay_ms=max(0, int(delay_ms)))
        with self._lock:
            due = self.clock.now_ms() + handle.delay_ms
            heapq.heappush(self._queue, (due, handle.id, handle))
        return handle

    def cancel(self, handle: ScheduledCall | None) -> bool:
        if handle is None:
            return False
        with self._lock:
            if not handle.pending:
                return False
            handle.cancelled = True
            return True

    def advance(self, delta_ms: int) -> int:
        """Move virtual time forward, firing every call that comes due.

        Args:
            delta_ms: Milliseconds to advance.

        Returns:
            Number of callbacks fired.
        """
        if delta_ms < 0:
            raise ValueError("delta_ms must not be negative")
        target = self.clock.now_ms() + int(delta_ms)
        fired = 0
        while True:
            with self._lock:
                self._drop_cancelled()
                if not self._queue or self._queue[0][0] > target:
                    break
                due, _, handle = heapq.heappop(self._queue)
            if due > self.clock.now_ms():
                self.clock.set(due)
            self._run(handle)
            fired += 1
        self.clock.set(max(target, self.clock.now_ms()))
        return fired

    def run_pending(self) -> int:
        """Fire calls already due without moving the clock."""
        return self.advance(0)

    def _drop_cancelled(self) -> None:
        while self._queue and not self._queue[0][2].pending:
            heapq.heappop(self._queue)

    @property
    def pending_count(self) -> int:
        """Number of calls waiting to fire."""
        with self._lock:
            return sum(1 for _, _, handle in self._queue if handle.pending)

    @property
    def next_due_ms(self) -> int | None:
        """Due instant of the earliest pending call, or None."""
        with self._lock:
            self._drop_cancelled()
            return self._queue[0][0] if self._queue else None
