"""Init command for ReleasePilot CLI."""

import typer
import yaml

from releasepilot.cli import (
    CONFIG_FILE,
    LOGS_DIR,
    RELEASEPILOT_DIR,
    app,
    console,
)
from releasepilot.cli.utils import get_config, open_database
from releasepilot.config import default_config_dict


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Initialize the ReleasePilot directory and database.

    Creates the ~/.releasepilot directory with:
    - logs/ directory for server logs
    - config.yaml with default settings
    - the SQLite database with all tables
    """
    if CONFIG_FILE.exists() and not force:
        console.print(f"[yellow]ReleasePilot already initialized at {RELEASEPILOT_DIR}[/]")
        console.print("Use [cyan]--force[/] to reinitialize")
        raise typer.Exit(1)

    # Create directories
    RELEASEPILOT_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)

    CONFIG_FILE.write_text(
        yaml.dump(default_config_dict(), default_flow_style=False, sort_keys=False)
    )

    db = open_database(get_config())
    db.dispose()

    console.print(f"[green]✓[/] Initialized ReleasePilot at {RELEASEPILOT_DIR}")
    console.print(f"[green]✓[/] Created config file: {CONFIG_FILE}")
    console.print(f"[green]✓[/] Database ready: {db.url}")
    console.print()
    console.print("Run [cyan]releasepilot add-user[/] to create the first release manager")
