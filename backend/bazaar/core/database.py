"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode for the reference store
WHY: Persist negotiations, messages, wallets and KYC records
HOW: SQLAlchemy sync engine v2 with WAL mode, session management
"""

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Base for models
Base = declarative_base()


def build_engine(url: str) -> Engine:
    """
    Create a SQLite engine with WAL and foreign keys enabled.

    In-memory URLs share one connection so every session sees the same data.
    """
    in_memory = url in ("sqlite://", "sqlite:///:memory:")
    if not in_memory and url.startswith("sqlite:///"):
        data_dir = Path(url.replace("sqlite:///", "")).parent
        data_dir.mkdir(parents=True, exist_ok=True)

    kwargs = {
        "connect_args": {"check_same_thread": False},
        "echo": settings.DEBUG,
    }
    if in_memory:
        kwargs["poolclass"] = StaticPool

    new_engine = create_engine(url, **kwargs)

    @event.listens_for(new_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable WAL mode for better concurrency."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return new_engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)


@contextmanager
def get_db(session_factory: sessionmaker | None = None):
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            # use db session
            pass

    Yields:
        Session: SQLAlchemy session
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database(bind: Engine | None = None) -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    target = bind or engine
    try:
        with target.connect() as conn:
            result = conn.execute(text("SELECT 1"))
            result.fetchone()

        return {
            "available": True,
            "url": str(target.url),
            "error": None
        }
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {
            "available": False,
            "url": str(target.url),
            "error": str(e)
        }


def init_db(bind: Engine | None = None):
    """Create all tables."""
    # Register ORM classes on Base.metadata
    from . import models  # noqa: F401

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"Database initialized ({target.url})")


def close_db(bind: Engine | None = None):
    """Close database connections."""
    (bind or engine).dispose()
    logger.info("Database connections closed")
