"""Health check endpoints for ReleasePilot API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter
from sqlalchemy import text

from releasepilot import __version__
from releasepilot.api.dependencies import DatabaseDep, OptionalScheduler

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Check API health status.

    Returns:
        Health status with timestamp.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "releasepilot",
        "version": __version__,
    }


@router.get("/health/ready")
async def readiness_check(db: DatabaseDep, scheduler: OptionalScheduler) -> dict[str, Any]:
    """Check if the API is ready to serve requests.

    Returns:
        Readiness status, including database reachability and scheduler state.
    """
    try:
        with db.session_scope() as session:
            session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        database = f"error: {e}"

    return {
        "status": "ready" if database == "ok" else "degraded",
        "timestamp": datetime.now(UTC).isoformat(),
        "database": database,
        "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Check if the API is alive.

    Returns:
        Liveness status.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(UTC).isoformat(),
    }
