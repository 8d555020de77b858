"""Countdown engine: clocks, formatting, scheduling and controllers."""
