"""ReleasePilot FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from releasepilot import __version__
from releasepilot.config import AppConfig
from releasepilot.errors import ErrorCategory, ReleasePilotError
from releasepilot.notifications import EmailNotifier, build_mailer
from releasepilot.scheduler import SchedulerService, SchedulingEngine
from releasepilot.storage import Database, ReleaseStore

from .broadcaster import ConnectionManager
from .routes import events, health, plans, settings, steps, users

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import datetime

    from releasepilot.notifications import Mailer

logger = logging.getLogger(__name__)

_STATUS_BY_CATEGORY = {
    ErrorCategory.PERMANENT: 404,
    ErrorCategory.PRECONDITION: 409,
    ErrorCategory.VALIDATION: 400,
}


def create_app(
    *,
    config: AppConfig | None = None,
    db: Database | None = None,
    mailer: Mailer | None = None,
    clock: Callable[[], datetime] | None = None,
    start_scheduler: bool = True,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application configuration. Defaults to built-in defaults.
        db: Database to use. Defaults to the one named by ``config``.
        mailer: Mail transport. Defaults to SMTP or log-only per ``config.smtp``.
        clock: Clock handed to the scheduling engine.
        start_scheduler: Run the poll tick and step timers during the app lifespan.
        enable_cors: Enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    config = config or AppConfig()
    if db is None:
        db = Database(config.resolved_database())
    db.create_tables()

    store = ReleaseStore(db)
    connections = ConnectionManager()
    notifier = EmailNotifier(
        store,
        mailer or build_mailer(config.smtp),
        default_sender=config.smtp.default_sender,
    )
    engine = SchedulingEngine(
        store,
        notifier,
        connections.broadcast,
        clock=clock,
        notification_concurrency=config.scheduler.notification_concurrency,
    )
    scheduler = (
        SchedulerService(
            engine,
            poll_interval_seconds=config.scheduler.poll_interval_seconds,
            step_timers=config.scheduler.step_timers,
        )
        if start_scheduler
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if scheduler is not None:
            await scheduler.restore_timers()
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()
            await engine.wait_for_notifications()

    app = FastAPI(
        title="ReleasePilot API",
        description="Release coordination and step scheduling API",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # Store components in app state
    app.state.config = config
    app.state.db = db
    app.state.store = store
    app.state.engine = engine
    app.state.scheduler = scheduler
    app.state.connections = connections

    @app.exception_handler(ReleasePilotError)
    async def handle_release_error(request: Request, exc: ReleasePilotError) -> JSONResponse:
        status = _STATUS_BY_CATEGORY.get(exc.category, 500)
        if status == 500:
            logger.error(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(status_code=status, content={"detail": exc.message})

    # Configure CORS
    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.server.cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Register API routers
    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(plans.router, prefix="/api", tags=["release-plans"])
    app.include_router(steps.router, prefix="/api", tags=["steps"])
    app.include_router(settings.router, prefix="/api", tags=["settings"])
    app.include_router(users.router, prefix="/api", tags=["users"])
    app.include_router(events.router, tags=["events"])

    return app
