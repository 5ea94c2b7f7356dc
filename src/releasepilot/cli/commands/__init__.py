"""ReleasePilot CLI commands."""
