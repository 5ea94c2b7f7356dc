"""ReleasePilot CLI interface."""

import typer
from rich.console import Console

from releasepilot.config import CONFIG_FILE, DB_FILE, RELEASEPILOT_DIR

# CLI App
app = typer.Typer(
    name="releasepilot",
    help="Release coordination with automatic step scheduling.",
    no_args_is_help=True,
)

# Console for rich output
console = Console()

# Default paths
LOGS_DIR = RELEASEPILOT_DIR / "logs"

__all__ = ["CONFIG_FILE", "DB_FILE", "LOGS_DIR", "RELEASEPILOT_DIR", "app", "console"]

# Import commands to register them
from releasepilot.cli.commands import init, plans, serve, tick, users  # noqa: E402, F401


@app.command()
def version() -> None:
    """Show ReleasePilot version."""
    from releasepilot import __version__

    console.print(f"ReleasePilot v{__version__}")


if __name__ == "__main__":
    app()
