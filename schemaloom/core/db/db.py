"""Database connection and session management.

One DatabaseManager per process. ``get_session()`` is the unit of work:
everything done inside the ``with`` block commits together or not at all.
"""

import logging
import os
import time
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./schemaloom.db"


class DatabaseManager:
    """Owns the SQLAlchemy engine and session factory."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        engine_kwargs = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            # In-memory SQLite: share one connection so every session sees the tables
            if ":memory:" in database_url:
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Yield a session; commit on success, roll back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self):
        """Create all ORM tables (development and tests; production uses alembic)."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables ensured")

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self):
        self.engine.dispose()

    def __repr__(self):
        return f"<DatabaseManager(url='{self.engine.url.render_as_string(hide_password=True)}')>"


def get_database_manager(database_url: Optional[str] = None) -> DatabaseManager:
    """Build a DatabaseManager from an explicit URL or $DATABASE_URL."""
    url = database_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
    # postgres:// is not accepted by SQLAlchemy 2.x
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return DatabaseManager(url)


def wait_for_db(
    db_manager: DatabaseManager,
    max_attempts: int = 10,
    delay_seconds: float = 2.0,
) -> bool:
    """Block until the database answers ``SELECT 1`` or attempts run out."""
    for attempt in range(1, max_attempts + 1):
        try:
            db_manager.ping()
            logger.info(f"Database available (attempt {attempt}/{max_attempts})")
            return True
        except OperationalError as e:
            logger.warning(
                f"Database not ready (attempt {attempt}/{max_attempts}): {e}"
            )
            if attempt < max_attempts:
                time.sleep(delay_seconds)
    logger.error(f"Database unavailable after {max_attempts} attempts")
    return False
