"""Database connection and session management."""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str | None = None):
    """Create SQLAlchemy engine with connection pooling."""
    url = database_url or get_settings().database_url

    if url.startswith("sqlite"):
        # SQLite uses its own pool classes; sharing across threads must be allowed
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    engine = create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # Set to True for SQL debugging
    )
    return engine


# Create engine and session factory
engine = create_db_engine()
# Rows handed back by the service layer are read after their session closes
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI endpoints that need a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def session_scope(factory: sessionmaker):
    """Build a transactional context manager bound to a session factory.

    The returned callable commits on success and rolls back on any error,
    so everything done inside one ``with`` block is a single transaction.
    """

    @contextmanager
    def _scope() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return _scope


# Usage:
#     with get_db_session() as db:
#         db.query(...)
get_db_session = session_scope(SessionLocal)


def check_database_health() -> bool:
    """Verify database connection is working.

    Returns:
        True if database is healthy, False otherwise.
    """
    try:
        with get_db_session() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def dispose_engine() -> None:
    """Dispose of the engine and all connections.

    Call this during graceful shutdown.
    """
    engine.dispose()
