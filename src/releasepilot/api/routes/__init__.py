"""ReleasePilot API routes."""

from . import events, health, plans, settings, steps, users

__all__ = [
    "events",
    "health",
    "plans",
    "settings",
    "steps",
    "users",
]
