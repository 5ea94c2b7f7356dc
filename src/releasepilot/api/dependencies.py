"""Shared dependencies for ReleasePilot API."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from releasepilot.scheduler import SchedulerService, SchedulingEngine
from releasepilot.storage import Database, ReleaseStore
from releasepilot.storage.models import User, UserRole

from .broadcaster import ConnectionManager


def get_database(request: Request) -> Database:
    """Get the database from app state.

    Args:
        request: FastAPI request object.

    Returns:
        The Database instance.
    """
    db: Database = request.app.state.db
    return db


def get_store(request: Request) -> ReleaseStore:
    """Get the persistence gateway from app state."""
    store: ReleaseStore = request.app.state.store
    return store


def get_engine(request: Request) -> SchedulingEngine:
    """Get the scheduling engine from app state."""
    engine: SchedulingEngine = request.app.state.engine
    return engine


def get_scheduler(request: Request) -> SchedulerService | None:
    """Get the scheduler service, or None when timers are not running."""
    scheduler: SchedulerService | None = request.app.state.scheduler
    return scheduler


def get_connections(request: Request) -> ConnectionManager:
    """Get the WebSocket connection manager from app state."""
    manager: ConnectionManager = request.app.state.connections
    return manager


async def get_current_user(
    request: Request,
    x_user_id: Annotated[str | None, Header()] = None,
) -> User:
    """Resolve the acting user from the X-User-Id header.

    Args:
        request: FastAPI request object.
        x_user_id: Id of the acting user.

    Returns:
        The acting user.

    Raises:
        HTTPException: 401 if the header is missing or names no user.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user = await get_store(request).get_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


def require_role(user: User, *roles: UserRole) -> None:
    """Raise 403 unless ``user`` holds one of ``roles``."""
    if user.role not in roles:
        raise HTTPException(status_code=403, detail="Insufficient permissions")


# Type aliases for dependency injection
DatabaseDep = Annotated[Database, Depends(get_database)]
StoreDep = Annotated[ReleaseStore, Depends(get_store)]
EngineDep = Annotated[SchedulingEngine, Depends(get_engine)]
OptionalScheduler = Annotated[SchedulerService | None, Depends(get_scheduler)]
CurrentUser = Annotated[User, Depends(get_current_user)]
