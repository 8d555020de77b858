"""Chronometer - Countdown timers with formatted ticks."""

__version__ = "0.1.0"
