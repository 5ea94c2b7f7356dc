"""Serve command for ReleasePilot CLI.

Runs the API server together with the step scheduler, in the foreground
or as a daemon with a PID file and a log file.
"""

from __future__ import annotations

import atexit
import logging
import os
import signal
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

import typer
import uvicorn

from releasepilot.cli import LOGS_DIR, RELEASEPILOT_DIR, app, console
from releasepilot.cli.utils import get_config

if TYPE_CHECKING:
    from types import FrameType

    from releasepilot.config import AppConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_pid_file() -> Path:
    """Get the path to the PID file."""
    return RELEASEPILOT_DIR / "releasepilot.pid"


def get_log_file() -> Path:
    """Get the path to the server log file."""
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    return LOGS_DIR / "server.log"


def read_pid() -> int | None:
    """Read the PID from the PID file.

    Returns:
        The PID if the file exists and the process is running, None otherwise.
    """
    pid_file = get_pid_file()
    if not pid_file.exists():
        return None

    try:
        pid = int(pid_file.read_text().strip())
        # Check if process is actually running
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        pid_file.unlink(missing_ok=True)
        return None


def write_pid(pid: int) -> None:
    """Write the PID to the PID file."""
    pid_file = get_pid_file()
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(pid))


def remove_pid_file() -> None:
    """Remove the PID file."""
    get_pid_file().unlink(missing_ok=True)


def stop_server(pid: int, timeout: int = 10) -> bool:
    """Stop a running server by PID.

    Args:
        pid: The process ID to stop.
        timeout: Maximum seconds to wait for graceful shutdown.

    Returns:
        True if server was stopped, False if it was already not running.
    """
    try:
        os.kill(pid, signal.SIGTERM)

        for _ in range(timeout):
            time.sleep(1)
            try:
                os.kill(pid, 0)
            except ProcessLookupError:
                remove_pid_file()
                return True

        # Force kill if still running
        os.kill(pid, signal.SIGKILL)
        time.sleep(0.5)
        remove_pid_file()
        return True

    except ProcessLookupError:
        remove_pid_file()
        return False


def daemonize() -> None:
    """Detach from the terminal using a double fork."""
    try:
        if os.fork() > 0:
            sys.exit(0)
    except OSError as e:
        console.print(f"[red]Error:[/] First fork failed: {e}")
        sys.exit(1)

    os.chdir("/")
    os.setsid()
    os.umask(0)

    try:
        if os.fork() > 0:
            sys.exit(0)
    except OSError as e:
        console.print(f"[red]Error:[/] Second fork failed: {e}")
        sys.exit(1)

    sys.stdout.flush()
    sys.stderr.flush()

    with (
        open("/dev/null", "rb") as null_in,
        open(get_log_file(), "a+b") as log_out,
    ):
        os.dup2(null_in.fileno(), sys.stdin.fileno())
        os.dup2(log_out.fileno(), sys.stdout.fileno())
        os.dup2(log_out.fileno(), sys.stderr.fileno())


def setup_signal_handlers() -> None:
    """Set up signal handlers for graceful shutdown."""

    def handle_signal(signum: int, frame: FrameType | None) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        remove_pid_file()
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)


def setup_logging(log_file: Path | None = None, debug: bool = False) -> None:
    """Configure logging for the server.

    Args:
        log_file: Log to this file instead of stderr.
        debug: Enable debug logging.
    """
    handlers: list[logging.Handler] = (
        [logging.FileHandler(log_file)] if log_file else [logging.StreamHandler()]
    )
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )
    # APScheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(logging.DEBUG if debug else logging.WARNING)


def run_server(config: AppConfig, host: str, port: int) -> None:
    """Build the app from ``config`` and run it under uvicorn."""
    # Import here to avoid circular imports
    from releasepilot.api.app import create_app

    uvicorn.run(create_app(config=config), host=host, port=port, log_level="info")


@app.command()
def serve(
    host: str | None = typer.Option(
        None,
        "--host",
        "-h",
        help="Host to bind to (default: from config)",
    ),
    port: int | None = typer.Option(
        None,
        "--port",
        "-p",
        help="Port to bind to (default: from config)",
    ),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Run as background daemon",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging",
    ),
) -> None:
    """Start the ReleasePilot API server and step scheduler.

    Examples:
        releasepilot serve                  # Start in foreground
        releasepilot serve --daemon         # Start as background daemon
        releasepilot serve --port 9000      # Custom port
    """
    config = get_config()
    host = host or config.server.host
    port = port or config.server.port

    existing_pid = read_pid()
    if existing_pid is not None:
        console.print(f"[yellow]Server already running (PID: {existing_pid})[/]")
        console.print("Use [cyan]releasepilot stop[/] to stop it first.")
        raise typer.Exit(1)

    if daemon:
        console.print(f"[cyan]Starting ReleasePilot in daemon mode on {host}:{port}...[/]")

        daemonize()

        # Now we're in the daemon process
        setup_logging(get_log_file(), debug)
        setup_signal_handlers()
        write_pid(os.getpid())
        atexit.register(remove_pid_file)

        logger.info(f"ReleasePilot server starting on {host}:{port}")
        run_server(config, host, port)
    else:
        console.print(f"[cyan]Starting ReleasePilot on {host}:{port}...[/]")
        console.print("[dim]Press Ctrl+C to stop[/]")
        console.print()

        setup_logging(debug=debug)
        write_pid(os.getpid())
        atexit.register(remove_pid_file)

        try:
            run_server(config, host, port)
        except KeyboardInterrupt:
            console.print("\n[yellow]Server stopped.[/]")
        finally:
            remove_pid_file()


@app.command()
def stop() -> None:
    """Stop the running ReleasePilot server.

    Sends SIGTERM for a graceful shutdown and kills the process if it is
    still running after 10 seconds.
    """
    pid = read_pid()
    if pid is None:
        console.print("[yellow]Server is not running.[/]")
        raise typer.Exit(0)

    console.print(f"[cyan]Stopping ReleasePilot server (PID: {pid})...[/]")

    if stop_server(pid):
        console.print("[green]Server stopped successfully.[/]")
    else:
        console.print("[yellow]Server was already stopped.[/]")
