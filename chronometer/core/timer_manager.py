"""Timer Manager - Named countdowns with tick and completion callbacks.

Keeps one CountdownController per name, all sharing a clock and scheduler.
Timers are transient (not persisted to disk).
"""

import logging
import threading
from typing import Any

from chronometer.core.clock import Clock, get_default_clock
from chronometer.core.controller import CountdownController, DisplaySink, Listener
from chronometer.core.scheduler import Scheduler, ThreadingScheduler

logger = logging.getLogger(__name__)


class TimerManager:
    """Manages named countdown timers.

    Singleton pattern ensures the CLI, web routes and WebSocket handlers
    share the same state. Timers are transient and do not survive a
    restart.
    """

    _instance: "TimerManager | None" = None

    def __new__(cls, *args: Any, **kwargs: Any) -> "TimerManager":
        """Ensure singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(
        self,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        """Initialize the timer manager (only runs once).

        Args:
            clock: Clock shared by all timers (default: wall clock).
            scheduler: Scheduler shared by all timers (default: threading).
        """
        if self._initialized:
            return

        self._clock = clock or get_default_clock()
        self._scheduler = scheduler or ThreadingScheduler()
        self._timers: dict[str, CountdownController] = {}
        self._listeners: list[Listener] = []
        self._complete_listeners: list[Listener] = []
        self._remove_listeners: list[Any] = []
        self._lock = threading.Lock()
        self._initialized = True

    @property
    def clock(self) -> Clock:
        return self._clock

    def add_tick_listener(self, listener: Listener) -> None:
        """Observe ticks of every timer (e.g., WebSocket broadcast)."""
        self._listeners.append(listener)

    def add_complete_listener(self, listener: Listener) -> None:
        """Observe completion of every timer."""
        self._complete_listeners.append(listener)

    def add_remove_listener(self, listener: Any) -> None:
        """Observe timer removal; called with the timer name."""
        self._remove_listeners.append(listener)

    def clear_listeners(self) -> None:
        """Drop all manager-wide listeners."""
        self._listeners.clear()
        self._complete_listeners.clear()
        self._remove_listeners.clear()

    def create_timer(
        self,
        name: str,
        base: int,
        on_tick: Listener | None = None,
        on_complete: Listener | None = None,
        fmt: str | None = None,
        custom_format: str | None = None,
        display: DisplaySink | None = None,
    ) -> CountdownController:
        """Create (or replace) a stopped timer counting down to `base`.

        Args:
            name: Timer identifier.
            base: Target instant in epoch milliseconds.
            on_tick: Called every second with the controller.
            on_complete: Called once when the countdown reaches zero.
            fmt: Outer format, e.g. "Time left: %s".
            custom_format: Custom chrono format (days, hours, minutes, seconds).
            display: Receives every rendered string.

        Returns:
            The new controller.
        """
        controller = CountdownController(
            base,
            name=name,
            clock=self._clock,
            scheduler=self._scheduler,
            display=display,
        )
        controller.set_format(fmt)
        controller.set_custom_chrono_format(custom_format)
        controller.set_on_tick_listener(self._fan_out(on_tick, self._listeners))
        controller.set_on_complete_listener(
            self._fan_out(on_complete, self._complete_listeners)
        )

        with self._lock:
            previous = self._timers.get(name)
            self._timers[name] = controller

        # Stop existing timer with same name
        if previous is not None:
            previous.stop()
            logger.debug("Timer '%s' replaced", name)

        return controller

    def start_timer(
        self,
        name: str,
        seconds: float,
        on_tick: Listener | None = None,
        on_complete: Listener | None = None,
        fmt: str | None = None,
        custom_format: str | None = None,
        display: DisplaySink | None = None,
    ) -> CountdownController:
        """Start a countdown timer `seconds` from now.

        If a timer with the same name is already running, it is stopped
        and restarted with the new duration.

        Args:
            name: Timer identifier.
            seconds: Countdown duration in seconds (minimum 1).
            on_tick: Called every second with the controller.
            on_complete: Called when the timer reaches zero.
            fmt: Outer format.
            custom_format: Custom chrono format.
            display: Receives every rendered string.

        Returns:
            The running controller.
        """
        seconds = max(1.0, float(seconds))
        base = self._clock.now_ms() + int(seconds * 1000)
        controller = self.create_timer(
            name,
            base,
            on_tick,
            on_complete,
            fmt=fmt,
            custom_format=custom_format,
            display=display,
        )
        controller.start()
        logger.info("Timer '%s' started: %.0fs", name, seconds)
        return controller

    def resume_timer(self, name: str) -> bool:
        """Start an existing timer without changing its target.

        Args:
            name: Timer identifier.

        Returns:
            True if the timer exists.
        """
        controller = self.get(name)
        if controller is None:
            return False
        controller.start()
        logger.info("Timer '%s' resumed (%s)", name, controller.state.value)
        return True

    def stop_timer(self, name: str) -> bool:
        """Stop a running timer.

        Args:
            name: Timer identifier.

        Returns:
            True if timer was running and stopped, False otherwise.
        """
        controller = self.get(name)
        if controller is None or not controller.is_running:
            return False
        controller.stop()
        logger.info(
            "Timer '%s' stopped (%ds remaining)", name, controller.remaining_seconds()
        )
        return True

    def toggle_timer(
        self,
        name: str,
        seconds: float,
        on_tick: Listener | None = None,
        on_complete: Listener | None = None,
    ) -> bool:
        """Toggle a timer: stop if running, start if stopped.

        A restarted timer keeps the formats and display of the one it
        replaces.

        Args:
            name: Timer identifier.
            seconds: Duration for start (ignored if stopping).
            on_tick: Called every second with the controller.
            on_complete: Called when timer reaches zero.

        Returns:
            True if timer was started, False if stopped.
        """
        if self.stop_timer(name):
            logger.info("Timer '%s' toggled off", name)
            return False

        previous = self.get(name)
        if previous is None:
            self.start_timer(name, seconds, on_tick, on_complete)
        else:
            self.start_timer(
                name,
                seconds,
                on_tick,
                on_complete,
                fmt=previous.get_format(),
                custom_format=previous.get_custom_chrono_format(),
                display=previous.get_display(),
            )
        return True

    def set_target(self, name: str, base: int) -> bool:
        """Move a timer's target instant.

        Args:
            name: Timer identifier.
            base: New target in epoch milliseconds.

        Returns:
            True if the timer exists.
        """
        controller = self.get(name)
        if controller is None:
            return False
        controller.set_base(base)
        return True

    def remove_timer(self, name: str) -> bool:
        """Stop and forget a timer.

        Args:
            name: Timer identifier.

        Returns:
            True if the timer existed.
        """
        with self._lock:
            controller = self._timers.pop(name, None)
        if controller is None:
            return False
        controller.detach()
        for listener in list(self._remove_listeners):
            try:
                listener(name)
            except Exception as e:
                logger.error("Timer '%s' remove listener error: %s", name, e)
        logger.info("Timer '%s' removed", name)
        return True

    def get(self, name: str) -> CountdownController | None:
        """Get a timer's controller, or None if unknown."""
        with self._lock:
            return self._timers.get(name)

    def get_remaining(self, name: str) -> int | None:
        """Get remaining seconds for a timer.

        Args:
            name: Timer identifier.

        Returns:
            Remaining seconds, or None if timer doesn't exist.
        """
        controller = self.get(name)
        if controller is None:
            return None
        return controller.remaining_seconds()

    def is_running(self, name: str) -> bool:
        """Check if a timer is currently running.

        Args:
            name: Timer identifier.

        Returns:
            True if timer exists and is running.
        """
        controller = self.get(name)
        return controller is not None and controller.is_running

    def get_all(self) -> dict[str, dict[str, Any]]:
        """Get status of all timers.

        Returns:
            Dictionary of timer names to status dicts.
        """
        with self._lock:
            timers = list(self._timers.items())
        return {name: controller.snapshot() for name, controller in timers}

    def stop_all(self) -> None:
        """Stop and forget all timers (call on app shutdown)."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for controller in timers:
            controller.detach()
        if isinstance(self._scheduler, ThreadingScheduler):
            self._scheduler.cancel_all()
        logger.info("All timers stopped")

    @staticmethod
    def _fan_out(own: Listener | None, shared: list[Listener]) -> Listener:
        """Combine a timer's own listener with the manager-wide ones."""

        def listener(controller: CountdownController) -> None:
            for callback in ([own] if own else []) + list(shared):
                try:
                    callback(controller)
                except Exception as e:
                    logger.error("Timer '%s' listener error: %s", controller.name, e)

        return listener


def get_timer_manager() -> TimerManager:
    """Get the timer manager singleton.

    Returns:
        The TimerManager instance.
    """
    return TimerManager()
