from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from src.db.models.base import Base

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _create_engine(url: str) -> Engine:
    settings = get_settings()
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(
        url,
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def get_engine() -> Engine:
    """Get the database engine (created on first use)."""
    global _engine, _SessionLocal
    if _engine is None:
        _engine = _create_engine(get_settings().database_url)
        _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    return _engine


def configure_engine(url: str) -> Engine:
    """Point the module at a different database (tests, CLI --database)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = _create_engine(url)
    _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    return _engine


def init_db() -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables initialized")


def check_database_health() -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    get_engine()
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()
