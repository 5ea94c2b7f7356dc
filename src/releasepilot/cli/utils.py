"""Utility functions for ReleasePilot CLI."""

from pathlib import Path

import typer

from releasepilot.cli import CONFIG_FILE, RELEASEPILOT_DIR, console
from releasepilot.config import AppConfig, load_config
from releasepilot.errors import ConfigError
from releasepilot.storage import Database, init_database


def get_releasepilot_dir() -> Path:
    """Get the ReleasePilot home directory."""
    return RELEASEPILOT_DIR


def get_config() -> AppConfig:
    """Load configuration, exiting with a message if it is invalid.

    Raises:
        typer.Exit: If the config file cannot be loaded.
    """
    try:
        return load_config(CONFIG_FILE)
    except ConfigError as e:
        console.print(f"[red]Error:[/] {e.message}")
        raise typer.Exit(1) from e


def open_database(config: AppConfig) -> Database:
    """Open the configured database, creating tables if needed."""
    return init_database(config.resolved_database())
