"""Database connection management for InvoiceAgent.

Synchronous SQLAlchemy engine over SQLite by default. Conversation
writes are short single-row transactions, so no async engine is needed.

Usage:
    from src.db.connection import get_db_context, init_db

    init_db()  # Create tables
    with get_db_context() as db:
        db.add(...)
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from src.db.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./invoiceagent.db"


def get_database_url() -> str:
    """Get database URL from DATABASE_URL or use the default SQLite file."""
    return os.environ.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL


DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Enable foreign keys (for message cascade) and WAL on SQLite."""
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped database session for FastAPI Depends().

    Yields:
        Session: SQLAlchemy session that will be closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for a session that commits on success.

    Usage:
        with get_db_context() as db:
            db.add(ConversationSession(title="Chat"))
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create all tables. Safe to call multiple times."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized at %s", DATABASE_URL)


def close_db() -> None:
    """Dispose of the engine's connection pool."""
    engine.dispose()
