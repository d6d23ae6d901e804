"""Database configuration for the calendar backend."""
from typing import Generator
from sqlmodel import create_engine, Session
import logging
import os
from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.pool import StaticPool

# Load environment variables but prioritize local development
load_dotenv()

logger = logging.getLogger(__name__)

# Use the DATABASE_URL from environment variable, with fallback to SQLite for local dev
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./calendar_app.db")
IS_SQLITE = DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    logger.info(f"[DB CONFIG] Using SQLite database: {DATABASE_URL}")
else:
    logger.info("[DB CONFIG] Using server database")


def build_engine(url: str):
    """Create an engine, sharing one connection for in-memory SQLite."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
        kwargs["poolclass"] = StaticPool
    new_engine = create_engine(url, echo=False, **kwargs)

    @event.listens_for(new_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        # Needed for ON DELETE CASCADE on plan children
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return new_engine


engine = build_engine(DATABASE_URL)


def get_session() -> Generator[Session, None, None]:
    """Dependency for getting database sessions."""
    with Session(engine) as session:
        yield session
