"""ReleasePilot REST API and real-time event stream."""

from .app import create_app
from .broadcaster import ConnectionManager

__all__ = ["ConnectionManager", "create_app"]
