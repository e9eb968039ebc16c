"""Database session management."""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from gtasks_bridge.database.models import Base

logger = structlog.get_logger(__name__)

# Cache for engines to avoid recreating them
_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker] = {}


def get_db_url(db_path: Path | str) -> str:
    """Get the SQLite URL for a database file, creating its directory."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def get_engine(db_url: str) -> Engine:
    """Get or create database engine for a specific URL."""
    if db_url not in _engines:
        logger.debug("creating_db_engine", url=db_url)
        _engines[db_url] = create_engine(
            db_url,
            pool_pre_ping=True,
            echo=False,
            connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
        )
    return _engines[db_url]


def get_session_factory(db_url: str) -> sessionmaker:
    """Get or create session factory for a specific URL."""
    if db_url not in _session_factories:
        engine = get_engine(db_url)
        _session_factories[db_url] = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    return _session_factories[db_url]


def init_db(db_url: str) -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(get_engine(db_url))


@contextmanager
def get_db_session(db_url: str) -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Commits on success and rolls back on any exception.

    Usage:
        with get_db_session(url) as session:
            ...
    """
    factory = get_session_factory(db_url)
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine(db_url: str) -> None:
    """Close pooled connections for one database and forget its engine."""
    engine = _engines.pop(db_url, None)
    _session_factories.pop(db_url, None)
    if engine is not None:
        engine.dispose()


def cleanup_db_connections() -> None:
    """Clean up all database connections."""
    logger.info("cleaning_up_database_connections")

    try:
        for url, engine in _engines.items():
            logger.debug("disposing_database_engine", url=url)
            engine.dispose()

        _engines.clear()
        _session_factories.clear()

        logger.info("database_connections_cleaned_up")

    except Exception as e:
        logger.error("database_cleanup_failed", error=str(e), exc_info=True)
        raise
