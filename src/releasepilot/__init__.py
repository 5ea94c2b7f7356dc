"""ReleasePilot: release coordination with automatic step scheduling."""

__version__ = "0.1.0"
