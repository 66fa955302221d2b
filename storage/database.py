"""
Storage - Database engine and sessions.

============================================================
RESPONSIBILITY
============================================================
- Builds the SQLAlchemy engine from DATABASE_URL
- Hands out sessions and transaction scopes
- Creates the schema on first start

PostgreSQL is the production target. SQLite URLs are accepted for local
runs and tests (in-memory databases share a single connection).

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from storage.models import Base


load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///transfer_watch.db"

# =============================================================
# DATABASE ENGINE
# =============================================================

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgresql+asyncpg"):
        # Sessions are synchronous
        url = url.replace("postgresql+asyncpg", "postgresql")
    
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"DATABASE_URL not set, using default: {url}")
    
    return url


def _safe_url(url: str) -> str:
    return url.split("@")[-1]


def create_database_engine(
    url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create a SQLAlchemy engine.
    
    Args:
        url: Database URL (defaults to get_database_url())
        pool_size: Connections kept in the pool (server databases)
        max_overflow: Max connections beyond pool_size
        pool_timeout: Seconds to wait for a connection
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements
    """
    database_url = url or get_database_url()
    logger.info(f"Creating database engine for: {_safe_url(database_url)}")
    
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
    else:
        engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )
    
    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")
    
    return engine


def get_engine() -> Engine:
    """Get the process-wide engine, creating it if necessary."""
    global _engine
    if _engine is None:
        _engine = create_database_engine()
    return _engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """
    Get a session factory.
    
    With an explicit engine a new factory is returned; otherwise the
    process-wide factory bound to get_engine().
    """
    global _SessionFactory
    
    if engine is not None:
        return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionFactory


# =============================================================
# SESSION MANAGEMENT
# =============================================================

@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Session context with rollback on error.
    
    Repositories commit their own units of work; anything left pending
    when an exception escapes is rolled back and the exception re-raised.
    
    Usage:
        with session_scope() as session:
            WatermarkRepository(session).save_watermark(...)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
    except Exception as e:
        logger.debug(f"Rolling back session after error: {e}")
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================
# DATABASE INITIALIZATION
# =============================================================

def verify_database_connection(engine: Optional[Engine] = None) -> bool:
    """
    Verify the database answers.
    
    Raises:
        DatabaseConnectionError: If the connection fails
    """
    engine = engine or get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e


def init_database(engine: Optional[Engine] = None) -> None:
    """
    Verify connectivity and create any missing tables.
    
    Raises:
        DatabasePersistenceError: On any failure
    """
    engine = engine or get_engine()
    verify_database_connection(engine)
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise DatabaseInitializationError(f"Table creation failed: {e}") from e
    logger.info(f"Database schema ready ({len(Base.metadata.tables)} tables)")


# =============================================================
# CUSTOM EXCEPTIONS
# =============================================================

class DatabasePersistenceError(Exception):
    """Raised when database persistence fails."""
    pass


class DatabaseConnectionError(DatabasePersistenceError):
    """Raised when database connection fails."""
    pass


class DatabaseInitializationError(DatabasePersistenceError):
    """Raised when database initialization fails."""
    pass


__all__ = [
    "create_database_engine",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "init_database",
    "verify_database_connection",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
