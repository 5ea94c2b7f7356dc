"""Configuration management for ReleasePilot."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from releasepilot.errors import ConfigError

RELEASEPILOT_DIR = Path.home() / ".releasepilot"
CONFIG_FILE = RELEASEPILOT_DIR / "config.yaml"
DB_FILE = RELEASEPILOT_DIR / "releasepilot.db"


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class SchedulerConfig(BaseModel):
    """Scheduling engine settings."""

    poll_interval_seconds: int = Field(default=60, ge=1)
    step_timers: bool = Field(
        default=True,
        description="Register one-shot timers for fixed-time steps alongside the poll",
    )
    notification_concurrency: int = Field(default=10, ge=1)


class SmtpConfig(BaseModel):
    """Mail transport settings. No host means log-only delivery."""

    host: str | None = None
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    default_sender: str = "noreply@releasepilot.local"
    timeout: float = 10.0


class AppConfig(BaseModel):
    """Top-level ReleasePilot configuration."""

    database_url: str | None = None
    server: ServerConfig = Field(default_factory=ServerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)

    def resolved_database(self) -> str | Path:
        """Database URL or path to hand to :class:`~releasepilot.storage.Database`."""
        return self.database_url or DB_FILE


# Environment variable -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "RELEASEPILOT_DATABASE_URL": (None, "database_url"),
    "RELEASEPILOT_POLL_INTERVAL": ("scheduler", "poll_interval_seconds"),
    "RELEASEPILOT_SMTP_HOST": ("smtp", "host"),
    "RELEASEPILOT_SMTP_PORT": ("smtp", "port"),
    "RELEASEPILOT_SMTP_USER": ("smtp", "username"),
    "RELEASEPILOT_SMTP_PASSWORD": ("smtp", "password"),
    "RELEASEPILOT_MAIL_FROM": ("smtp", "default_sender"),
}


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for env_var, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        if section is None:
            raw[key] = value
        else:
            target = raw.setdefault(section, {})
            if isinstance(target, dict):
                target[key] = value
    return raw


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load ReleasePilot configuration.

    Checks in order of priority:
    1. RELEASEPILOT_* environment variables
    2. The YAML config file (~/.releasepilot/config.yaml by default)
    3. Built-in defaults

    Args:
        config_path: Optional path to the YAML file.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    path = config_path or CONFIG_FILE
    raw: dict[str, Any] = {}

    if path.exists():
        try:
            with open(path) as f:
                loaded = yaml.safe_load(f)
        except (yaml.YAMLError, OSError) as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        raw = loaded or {}

    try:
        return AppConfig.model_validate(_apply_env_overrides(raw))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def default_config_dict() -> dict[str, Any]:
    """Config written by ``releasepilot init``."""
    return {
        "server": {"host": "127.0.0.1", "port": 8080},
        "scheduler": {"poll_interval_seconds": 60, "step_timers": True},
        "smtp": {"host": None, "port": 587, "default_sender": "noreply@releasepilot.local"},
    }
