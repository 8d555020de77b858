"""Time Formatter - Renders remaining seconds as countdown text.

Fast-path output is chosen by magnitude:

    5s      -> "05"
    65s     -> "01:05"
    3661s   -> "1:01:01"
    90000s  -> "1:01:00:00"

A custom inner template replaces the fast path and always receives
(days, hours, minutes, seconds). An outer template wraps whatever the inner
step produced. Template failures never raise; they degrade to the previous
step's text and are reported on the result.
"""

from dataclasses import dataclass
from typing import NamedTuple

from chronometer.core.templates import DEFAULT_ENGINE, TemplateEngine, TemplateError

SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600
SECONDS_PER_MINUTE = 60

TIME_SEPARATOR = ":"


class TimeParts(NamedTuple):
    """Fixed-ratio breakdown of a duration."""

    days: int
    hours: int
    minutes: int
    seconds: int


@dataclass(frozen=True)
class FormatSpec:
    """Formatting rules for countdown text.

    Attributes:
        outer_template: Template with one placeholder for the rendered time,
            e.g. "Time left: %s". None shows the time as-is.
        custom_inner_template: Template with four positional placeholders
            (days, hours, minutes, seconds). None uses the fast path.
    """

    outer_template: str | None = None
    custom_inner_template: str | None = None


DEFAULT_SPEC = FormatSpec()


class Rendered(NamedTuple):
    """Result of a render call."""

    text: str
    error: TemplateError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def decompose(total_seconds: int) -> TimeParts:
    """Split seconds into days, hours, minutes and seconds.

    Largest unit first; only the days field is unbounded.

    Args:
        total_seconds: Non-negative duration in seconds.

    Returns:
        TimeParts with hours < 24, minutes < 60, seconds < 60.

    Raises:
        ValueError: If total_seconds is negative.
    """
    if total_seconds < 0:
        raise ValueError(f"total_seconds must not be negative, got {total_seconds}")

    remaining = int(total_seconds)
    days = remaining // SECONDS_PER_DAY
    remaining -= days * SECONDS_PER_DAY
    hours = remaining // SECONDS_PER_HOUR
    remaining -= hours * SECONDS_PER_HOUR
    minutes = remaining // SECONDS_PER_MINUTE
    remaining -= minutes * SECONDS_PER_MINUTE
    return TimeParts(days, hours, minutes, remaining)


def format_fast(parts: TimeParts) -> str:
    """Render the built-in variant for a breakdown.

    Args:
        parts: Decomposed duration.

    Returns:
        "D:HH:MM:SS", "H:MM:SS", "MM:SS" or "SS" depending on magnitude.
    """
    days, hours, minutes, seconds = parts
    if days > 0:
        return f"{days}:{hours:02d}:{minutes:02d}:{seconds:02d}"
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    if minutes > 0:
        return f"{minutes:02d}:{seconds:02d}"
    return f"{seconds:02d}"


def render(
    remaining_seconds: int,
    spec: FormatSpec = DEFAULT_SPEC,
    engine: TemplateEngine = DEFAULT_ENGINE,
) -> Rendered:
    """Render remaining time using the given rules.

    Negative input is clamped to zero.

    Args:
        remaining_seconds: Whole seconds left.
        spec: Format rules (defaults to plain fast path).
        engine: Template engine for the custom and outer templates.

    Returns:
        Rendered text plus the first template error hit, if any.
    """
    parts = decompose(max(0, int(remaining_seconds)))
    error: TemplateError | None = None

    if spec.custom_inner_template is not None:
        try:
            text = engine.format(spec.custom_inner_template, *parts)
        except TemplateError as e:
            error = e
            text = format_fast(parts)
    else:
        text = format_fast(parts)

    if spec.outer_template is not None:
        try:
            text = engine.format(spec.outer_template, text)
        except TemplateError as e:
            error = error or e

    return Rendered(text, error)


def format_remaining(remaining_seconds: int) -> str:
    """Shortcut for fast-path text without templates."""
    return render(remaining_seconds).text
