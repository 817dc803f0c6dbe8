"""Database connection and session management.

DatabaseManager owns the SQLAlchemy engine and session factory. Every
caller uses ``get_session()`` as a context manager so commit/rollback
happen in exactly one place.
"""

import logging
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Engine + session factory for the artifact store.

    Works against PostgreSQL (pgvector enabled) in production and SQLite
    for local runs and tests.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.is_postgres = database_url.startswith("postgresql")

        kwargs = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            # In-memory databases vanish per-connection unless pooled statically
            if ":memory:" in database_url or database_url == "sqlite://":
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
            kwargs["pool_size"] = 10
            kwargs["max_overflow"] = 20

        self.engine = create_engine(database_url, **kwargs)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False,
        )
        logger.info(f"DatabaseManager initialized (dialect={self.engine.dialect.name})")

    def init_db(self) -> None:
        """Create extensions and tables if they do not exist."""
        if self.is_postgres:
            with self.engine.begin() as conn:
                conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema ensured")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Yield a session that commits on success and rolls back on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def wait_for_db(db_manager: DatabaseManager, max_retries: int = 10, delay: float = 2.0) -> bool:
    """Block until the database accepts connections.

    Returns:
        True once a ``SELECT 1`` succeeds, False after ``max_retries``.
    """
    for attempt in range(1, max_retries + 1):
        try:
            with db_manager.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is available")
            return True
        except OperationalError as e:
            logger.warning(f"Database not ready (attempt {attempt}/{max_retries}): {e}")
            time.sleep(delay)
    logger.error("Database did not become available")
    return False
