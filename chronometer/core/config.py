"""Countdown Config - Loads countdown definitions from JSON.

Example:
{
    "profile_name": "demo",
    "countdowns": {
        "launch": {
            "seconds": 60,
            "format": "Formatted time (%s)",
            "autostart": true
        },
        "deadline": {
            "target": 1893456000000,
            "custom_format": "%1$d days, %2$02d hours, %3$02d minutes and %4$02d seconds remaining"
        }
    }
}
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chronometer.core.controller import CountdownController, DisplaySink
    from chronometer.core.timer_manager import TimerManager

logger = logging.getLogger(__name__)

KNOWN_KEYS = {"seconds", "target", "format", "custom_format", "autostart"}


class ConfigValidationError(Exception):
    """Raised when config validation fails."""

    pass


@dataclass(frozen=True)
class CountdownDefinition:
    """One configured countdown."""

    name: str
    seconds: float | None = None
    target: int | None = None
    format: str | None = None
    custom_format: str | None = None
    autostart: bool = True

    def resolve_base(self, now_ms: int) -> int:
        """Target instant for this definition.

        Args:
            now_ms: Current instant, used for relative definitions.

        Returns:
            Absolute target in epoch milliseconds.
        """
        if self.target is not None:
            return self.target
        return now_ms + int(self.seconds * 1000)


class CountdownConfig:
    """Parsed and validated countdown configuration."""

    def __init__(self, config_path: str | Path | None = None):
        """Initialize countdown config.

        Args:
            config_path: Path to JSON config file. If None, must call load later.
        """
        self._config: dict = {}
        self._countdowns: dict[str, CountdownDefinition] = {}

        if config_path:
            self.load(config_path)

    @property
    def raw(self) -> dict:
        """Get raw config dict."""
        return self._config

    @property
    def profile_name(self) -> str:
        return self._config.get("profile_name", "unknown")

    @property
    def countdowns(self) -> dict[str, CountdownDefinition]:
        """Get validated countdown definitions."""
        return dict(self._countdowns)

    def load(self, config_path: str | Path) -> None:
        """Load and validate config from a JSON file.

        Args:
            config_path: Path to JSON config file.

        Raises:
            ConfigValidationError: If config is invalid.
            FileNotFoundError: If config file doesn't exist.
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigValidationError(f"Invalid JSON: {e}")

        self.load_dict(data)

    def load_dict(self, data: Any) -> None:
        """Validate and adopt an already-parsed config.

        Args:
            data: Parsed JSON object.

        Raises:
            ConfigValidationError: If config is invalid.
        """
        if not isinstance(data, dict):
            raise ConfigValidationError("Config must be a JSON object")

        if "countdowns" not in data:
            raise ConfigValidationError("Config missing 'countdowns' section")

        entries = data["countdowns"]
        if not isinstance(entries, dict):
            raise ConfigValidationError("'countdowns' must be a dict")

        countdowns: dict[str, CountdownDefinition] = {}
        for name, entry in entries.items():
            # Skip metadata keys (start with _)
            if name.startswith("_"):
                continue
            countdowns[name] = _parse_countdown(name, entry)

        self._config = data
        self._countdowns = countdowns
        logger.info(
            "Loaded config: %s (%d countdowns)", self.profile_name, len(countdowns)
        )

    def apply(
        self,
        manager: "TimerManager",
        display_for: Callable[[str], "DisplaySink"] | None = None,
    ) -> list["CountdownController"]:
        """Create every configured countdown in a timer manager.

        Args:
            manager: Target timer manager.
            display_for: Builds a display sink for a countdown name.

        Returns:
            Controllers that were started (autostart).
        """
        started = []
        now = manager.clock.now_ms()
        for definition in self._countdowns.values():
            controller = manager.create_timer(
                definition.name,
                definition.resolve_base(now),
                fmt=definition.format,
                custom_format=definition.custom_format,
                display=display_for(definition.name) if display_for else None,
            )
            if definition.autostart:
                controller.start()
                started.append(controller)
        return started


def _parse_countdown(name: str, entry: Any) -> CountdownDefinition:
    """Validate one countdown entry."""
    if not isinstance(entry, dict):
        raise ConfigValidationError(f"Countdown '{name}' must be a dict")

    unknown = set(entry) - KNOWN_KEYS
    for key in sorted(unknown):
        if not key.startswith("_"):
            logger.warning("Unknown key '%s' in countdown '%s', will skip", key, name)

    seconds = entry.get("seconds")
    target = entry.get("target")
    if (seconds is None) == (target is None):
        raise ConfigValidationError(
            f"Countdown '{name}' needs exactly one of 'seconds' or 'target'"
        )

    if seconds is not None:
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds <= 0:
            raise ConfigValidationError(
                f"Countdown '{name}': 'seconds' must be a positive number, got: {seconds}"
            )
    if target is not None:
        if isinstance(target, bool) or not isinstance(target, int) or target < 0:
            raise ConfigValidationError(
                f"Countdown '{name}': 'target' must be epoch milliseconds, got: {target}"
            )

    for key in ("format", "custom_format"):
        value = entry.get(key)
        if value is not None and not isinstance(value, str):
            raise ConfigValidationError(f"Countdown '{name}': '{key}' must be a string")

    autostart = entry.get("autostart", True)
    if not isinstance(autostart, bool):
        raise ConfigValidationError(f"Countdown '{name}': 'autostart' must be a bool")

    return CountdownDefinition(
        name=name,
        seconds=seconds,
        target=target,
        format=entry.get("format"),
        custom_format=entry.get("custom_format"),
        autostart=autostart,
    )
