"""Chronometer - Console countdown demo and web API launcher.

Entry point for the chronometer application.
"""

import argparse
import logging
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TextIO

from chronometer.core.config import ConfigValidationError, CountdownConfig
from chronometer.core.controller import CountdownController
from chronometer.core.timer_manager import get_timer_manager

logger = logging.getLogger("chronometer")

# Default paths
DEFAULT_CONFIG = Path(__file__).parent / "config" / "default.json"

COMPLETE_MESSAGE = "We have lift off!"


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if debug else logging.INFO
    format_str = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=format_str,
        datefmt="%H:%M:%S",
    )
    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class ChronometerApp:
    """Console host: prints each countdown's text until all complete."""

    def __init__(
        self,
        config_path: Path | None = DEFAULT_CONFIG,
        seconds: float | None = None,
        fmt: str | None = None,
        custom_format: str | None = None,
        out: TextIO | None = None,
    ):
        """Initialize the application.

        Args:
            config_path: Path to config JSON file (ignored when seconds is set).
            seconds: Run a single ad-hoc countdown instead of the config.
            fmt: Outer format for the ad-hoc countdown.
            custom_format: Custom chrono format for the ad-hoc countdown.
            out: Stream for countdown text (default: stdout).
        """
        self._config_path = config_path
        self._seconds = seconds
        self._format = fmt
        self._custom_format = custom_format
        self._out = out or sys.stdout

        self._manager = get_timer_manager()
        self._started: list[CountdownController] = []
        self._pending: set[str] = set()
        self._all_done = threading.Event()
        self._lock = threading.Lock()

    def _display_for(self, name: str) -> Callable[[str], None]:
        """Build the display sink for one countdown."""

        def show(text: str) -> None:
            self._out.write(f"[{name}] {text}\n")
            self._out.flush()

        return show

    def _on_complete(self, controller: CountdownController) -> None:
        self._out.write(f"[{controller.name}] {COMPLETE_MESSAGE}\n")
        self._out.flush()
        with self._lock:
            self._pending.discard(controller.name)
            if not self._pending:
                self._all_done.set()

    def setup(self) -> bool:
        """Create countdowns from the ad-hoc options or the config.

        Returns:
            True if at least one countdown is running.
        """
        self._manager.add_complete_listener(self._on_complete)

        if self._seconds is not None:
            controller = self._manager.start_timer(
                "countdown",
                self._seconds,
                fmt=self._format,
                custom_format=self._custom_format,
                display=self._display_for("countdown"),
            )
            self._started = [controller]
        else:
            try:
                config = CountdownConfig(self._config_path)
            except (ConfigValidationError, FileNotFoundError) as e:
                logger.error("Failed to load config: %s", e)
                return False
            logger.info("Config loaded: %s", self._config_path)
            self._started = config.apply(self._manager, display_for=self._display_for)

        with self._lock:
            self._pending = {c.name for c in self._started if c.is_running}
            if not self._pending:
                self._all_done.set()

        if not self._started:
            logger.warning("No countdowns to run (nothing has autostart)")
            return False
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every started countdown completes.

        Returns:
            True if all completed, False on timeout.
        """
        return self._all_done.wait(timeout)

    def run(self) -> int:
        """Run the application.

        Returns:
            Exit code (0 for success).
        """
        if not self.setup():
            return 1

        print("Chronometer running. Press Ctrl+C to quit.", file=sys.stderr)
        try:
            while not self.wait(1.0):
                pass
        except KeyboardInterrupt:
            pass

        # Cleanup
        self._manager.stop_all()
        logger.info("Chronometer stopped")
        return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Chronometer - Countdown timers")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config JSON file",
    )
    parser.add_argument(
        "--seconds",
        "-s",
        type=float,
        help="Run a single countdown of this many seconds instead of the config",
    )
    parser.add_argument(
        "--format",
        "-f",
        dest="fmt",
        help='Outer format for --seconds, e.g. "Time left: %%s"',
    )
    parser.add_argument(
        "--custom-format",
        help='Custom chrono format for --seconds, e.g. "%%1$d days %%2$02d:%%3$02d:%%4$02d"',
    )
    parser.add_argument(
        "--web",
        action="store_true",
        help="Serve the countdown web API instead of the console demo",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Web API port (with --web)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.debug)

    # Web mode
    if args.web:
        from chronometer.web.server import DEFAULT_PORT, run_server

        try:
            CountdownConfig(args.config).apply(get_timer_manager())
        except (ConfigValidationError, FileNotFoundError) as e:
            logger.error("Failed to load config: %s", e)
            sys.exit(1)
        run_server(port=args.port or DEFAULT_PORT)
        return

    # Run console app
    app = ChronometerApp(
        config_path=args.config,
        seconds=args.seconds,
        fmt=args.fmt,
        custom_format=args.custom_format,
    )
    sys.exit(app.run())


if __name__ == "__main__":
    main()
