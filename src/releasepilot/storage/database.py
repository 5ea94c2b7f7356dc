"""Database connection and session management for ReleasePilot."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

if TYPE_CHECKING:
    from collections.abc import Generator

    from sqlalchemy.engine import Engine


class Database:
    """Database connection manager for ReleasePilot.

    Accepts a filesystem path (SQLite), ``":memory:"``, or a full SQLAlchemy URL.
    """

    def __init__(self, target: Path | str | None = None) -> None:
        """Initialize the database connection.

        Args:
            target: Path to the SQLite database file or a SQLAlchemy URL.
                    If None, uses ~/.releasepilot/releasepilot.db
        """
        if target is None:
            target = Path.home() / ".releasepilot" / "releasepilot.db"

        if isinstance(target, str) and "://" in target:
            self._url = target
            self._engine: Engine = create_engine(target, echo=False)
        elif str(target) == ":memory:":
            # One shared connection so every session sees the same tables
            self._url = "sqlite:///:memory:"
            self._engine = create_engine(
                self._url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            db_path = Path(target)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._url = f"sqlite:///{db_path}"
            self._engine = create_engine(self._url, echo=False)

        # Rows leave the session scope and are read by the scheduler afterwards
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @property
    def url(self) -> str:
        """Get the database URL."""
        return self._url

    def create_tables(self) -> None:
        """Create all database tables if they don't exist."""
        Base.metadata.create_all(self._engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self._engine)

    def dispose(self) -> None:
        """Close all pooled connections."""
        self._engine.dispose()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Usage:
            with db.session_scope() as session:
                repo = ReleaseStepRepository(session)
                repo.create(step)

        Yields:
            A SQLAlchemy Session that will be committed on success
            or rolled back on exception.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def init_database(target: Path | str | None = None) -> Database:
    """Initialize the database with tables created.

    This is typically called during application startup or
    by the `releasepilot init` command.

    Args:
        target: Optional path or URL for the database.

    Returns:
        The initialized Database instance.
    """
    db = Database(target)
    db.create_tables()
    return db
