"""Web API for hosting countdowns."""
