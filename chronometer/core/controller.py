"""Countdown Controller - Ticking countdown towards a target instant.

The controller derives `running` from two host signals (started, visible),
renders the remaining time once per second and notifies listeners:

- on_tick(controller): every second while running, and once on set_base()
- on_complete(controller): once, when a running countdown reaches zero

At most one scheduled callback is pending per controller. The callback only
holds a weak reference, so discarding a controller silences its ticks.
"""

import logging
import threading
import weakref
from collections.abc import Callable
from enum import Enum
from typing import Any

from chronometer.core.clock import Clock, get_default_clock
from chronometer.core.formatter import FormatSpec, render
from chronometer.core.scheduler import ScheduledCall, Scheduler, ThreadingScheduler
from chronometer.core.templates import DEFAULT_ENGINE, TemplateEngine

logger = logging.getLogger(__name__)

TICK_INTERVAL_MS = 1000

Listener = Callable[["CountdownController"], Any]
DisplaySink = Callable[[str], Any]


class CountdownState(str, Enum):
    """Lifecycle states of a countdown."""

    STOPPED = "stopped"
    RUNNING = "running"
    COMPLETED = "completed"


class CountdownController:
    """Countdown towards `base` (epoch milliseconds by default).

    All mutators are thread-safe. The display sink is called under the
    internal lock, so it sees renders in order. Listeners are called outside
    the lock, on the thread that caused the update.
    """

    def __init__(
        self,
        base: int = 0,
        *,
        name: str = "countdown",
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        engine: TemplateEngine = DEFAULT_ENGINE,
        display: DisplaySink | None = None,
        visible: bool = True,
    ):
        """Initialize the controller and render the initial text.

        Args:
            base: Target instant in the clock's milliseconds.
            name: Label used in logs and status snapshots.
            clock: Source of the current instant (default: wall clock).
            scheduler: Delayed-callback facility (default: threading timers).
            engine: Template engine for custom and outer formats.
            display: Receives every rendered string.
            visible: Initial visibility signal from the host.
        """
        self.name = name
        self._clock = clock or get_default_clock()
        self._scheduler = scheduler or ThreadingScheduler()
        self._engine = engine
        self._display = display
        self._lock = threading.RLock()

        self._base = int(base)
        self._started = False
        self._visible = visible
        self._running = False
        self._completed = False
        self._logged_format_warning = False

        self._format: str | None = None
        self._chrono_format: str | None = None
        self._on_tick: Listener | None = None
        self._on_complete: Listener | None = None

        self._pending: ScheduledCall | None = None
        self._generation = 0
        self._text = ""
        self._text_dirty = False
        self._remaining = 0

        with self._lock:
            self._update_text(self._clock.now_ms())
            self._show(self._pending_display())

    # --- Base ---

    def set_base(self, base: int) -> None:
        """Set the target instant.

        Re-renders immediately, fires the tick listener even when stopped,
        then reconciles scheduling. Pushing the base forward restarts a
        completed countdown if it is still started and visible.

        Args:
            base: Target instant in the clock's milliseconds.
        """
        with self._lock:
            self._base = int(base)
            self._update_text(self._clock.now_ms())
            self._show(self._pending_display())
        self._dispatch_tick()
        self._update_running()

    def get_base(self) -> int:
        """Return the target instant."""
        return self._base

    # --- Formats ---

    def set_format(self, fmt: str | None) -> None:
        """Set the outer format, e.g. "Time left: %s".

        The first placeholder receives the rendered time. None shows the
        time as-is. Takes effect on the next render.
        """
        with self._lock:
            self._format = fmt

    def get_format(self) -> str | None:
        """Return the outer format set through set_format()."""
        return self._format

    def set_custom_chrono_format(self, chrono_format: str | None) -> None:
        """Set a custom format for the time value itself.

        Example: "%1$02d days, %2$02d hours, %3$02d minutes and %4$02d seconds remaining"

        None restores the built-in "MM:SS" / "H:MM:SS" / "D:HH:MM:SS" output.
        """
        with self._lock:
            self._chrono_format = chrono_format

    def get_custom_chrono_format(self) -> str | None:
        """Return the format set through set_custom_chrono_format()."""
        return self._chrono_format

    @property
    def format_spec(self) -> FormatSpec:
        return FormatSpec(self._format, self._chrono_format)

    # --- Listeners ---

    def set_on_tick_listener(self, listener: Listener | None) -> None:
        self._on_tick = listener

    def get_on_tick_listener(self) -> Listener | None:
        return self._on_tick

    def set_on_complete_listener(self, listener: Listener | None) -> None:
        self._on_complete = listener

    def get_on_complete_listener(self) -> Listener | None:
        return self._on_complete

    def set_display(self, display: DisplaySink | None) -> None:
        """Set the sink that receives rendered text."""
        self._display = display

    def get_display(self) -> DisplaySink | None:
        return self._display

    # --- Lifecycle ---

    def start(self) -> None:
        """Start counting down.

        Does not touch the base. Each start() should be matched by a stop()
        so no scheduled callback outlives its use.
        """
        self.set_started(True)

    def stop(self) -> None:
        """Stop counting down and cancel the pending tick."""
        self.set_started(False)

    def set_started(self, started: bool) -> None:
        """Same as start() or stop()."""
        with self._lock:
            self._started = bool(started)
        self._update_running()

    def set_visible(self, visible: bool) -> None:
        """Host visibility signal. Invisible countdowns don't tick."""
        with self._lock:
            self._visible = bool(visible)
        self._update_running()

    def detach(self) -> None:
        """Host teardown: behaves like the countdown becoming invisible."""
        self.set_visible(False)

    # --- Queries ---

    @property
    def text(self) -> str:
        """Most recently rendered text."""
        return self._text

    @property
    def state(self) -> CountdownState:
        with self._lock:
            if self._running:
                return CountdownState.RUNNING
            if self._completed:
                return CountdownState.COMPLETED
            return CountdownState.STOPPED

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def has_pending_tick(self) -> bool:
        """True while a scheduled callback is outstanding."""
        pending = self._pending
        return pending is not None and pending.pending

    def remaining_seconds(self) -> int:
        """Whole seconds left right now (clamped to zero)."""
        return max(0, (self._base - self._clock.now_ms()) // 1000)

    def snapshot(self) -> dict[str, Any]:
        """Status dict for hosts (web API, logs)."""
        with self._lock:
            return {
                "name": self.name,
                "base": self._base,
                "remaining": self._remaining,
                "text": self._text,
                "state": self.state.value,
                "started": self._started,
                "visible": self._visible,
                "format": self._format,
                "custom_format": self._chrono_format,
            }

    # --- Internals ---

    def _update_text(self, now: int) -> bool:
        """Render remaining time and latch a format warning once.

        Returns:
            True if time remains, False once the target is reached.
        """
        with self._lock:
            seconds = (self._base - now) // 1000
            still_running = seconds > 0
            if not still_running:
                seconds = 0
            self._remaining = seconds

            rendered = render(seconds, self.format_spec, self._engine)
            if rendered.error is not None and not self._logged_format_warning:
                logger.warning(
                    "Illegal format string: %s (%s)",
                    rendered.error.template,
                    rendered.error.reason,
                )
                self._logged_format_warning = True

            self._text = rendered.text
            self._text_dirty = True
            return still_running

    def _pending_display(self) -> str | None:
        if self._text_dirty:
            self._text_dirty = False
            return self._text
        return None

    def _update_running(self) -> None:
        """Reconcile `running` with started/visible and the scheduler."""
        tick = False
        with self._lock:
            running = self._visible and self._started
            if running != self._running:
                if running:
                    if self._update_text(self._clock.now_ms()):
                        self._completed = False
                        tick = True
                        self._schedule_next()
                    else:
                        running = False
                        self._completed = True
                        self._cancel_pending()
                else:
                    self._completed = False
                    self._cancel_pending()
                self._running = running
                logger.debug("Countdown '%s' running=%s", self.name, running)
            elif not running:
                self._completed = self._completed and self._started and self._visible
            self._show(self._pending_display())

        if tick:
            self._dispatch_tick()

    def _schedule_next(self) -> None:
        """Arm the next tick. Must hold the lock."""
        self._cancel_pending()
        self._generation += 1
        generation = self._generation
        ref = weakref.ref(self)

        def on_tick() -> None:
            controller = ref()
            if controller is not None:
                controller._handle_tick(generation)

        self._pending = self._scheduler.schedule_after(TICK_INTERVAL_MS, on_tick)

    def _cancel_pending(self) -> None:
        """Cancel the outstanding tick, if any. Must hold the lock."""
        self._generation += 1
        if self._pending is not None:
            self._scheduler.cancel(self._pending)
            self._pending = None

    def _handle_tick(self, generation: int) -> None:
        """Scheduled callback body."""
        tick = complete = False
        with self._lock:
            if generation != self._generation or not self._running:
                return
            self._pending = None
            if self._update_text(self._clock.now_ms()):
                tick = True
                self._schedule_next()
            else:
                complete = True
                self._running = False
                self._completed = True
                self._generation += 1
                logger.info("Countdown '%s' complete", self.name)
            self._show(self._pending_display())

        if tick:
            logger.debug("Countdown '%s' tick: %s", self.name, self._text)
            self._dispatch_tick()
        if complete:
            self._dispatch_complete()

    def _show(self, text: str | None) -> None:
        """Hand rendered text to the display sink. Must hold the lock."""
        if text is None or self._display is None:
            return
        try:
            self._display(text)
        except Exception as e:
            logger.error("Countdown '%s' display error: %s", self.name, e)

    def _dispatch_tick(self) -> None:
        listener = self._on_tick
        if listener is not None:
            try:
                listener(self)
            except Exception as e:
                logger.error("Countdown '%s' on_tick error: %s", self.name, e)

    def _dispatch_complete(self) -> None:
        listener = self._on_complete
        if listener is not None:
            try:
                listener(self)
            except Exception as e:
                logger.error("Countdown '%s' on_complete error: %s", self.name, e)

    def __repr__(self) -> str:
        return f"CountdownController({self.name!r}, base={self._base}, state={self.state.value})"
