"""
Database engine, session factory, and metadata shared across the application.

The engine is created on first use so importing models or services never
opens a connection; tests bind their own engine and sessions.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from bookbeauty.core.config import settings

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None
_lock = threading.Lock()


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        return {"future": True, "connect_args": {"check_same_thread": False}}
    return {
        "future": True,
        "pool_size": 5,
        "max_overflow": 5,
        "pool_timeout": 5,
        "pool_recycle": 300,
        "pool_pre_ping": True,
    }


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    """Return the process engine, creating it on first call."""
    global _engine, _session_factory

    if _engine is not None:
        return _engine
    with _lock:
        if _engine is None:
            db_url = settings.database_url
            engine = create_engine(db_url, **_build_engine_kwargs(db_url))
            if db_url.startswith("sqlite"):
                event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            _session_factory = sessionmaker(
                autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
            )
            _engine = engine
            logger.info("Database engine initialized", extra={"dialect": engine.dialect.name})
    return _engine


def SessionLocal() -> Session:
    """Open a new session on the process engine."""
    get_engine()
    assert _session_factory is not None
    return _session_factory()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
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
    """Create tables that do not exist yet (local development)."""
    import bookbeauty.models  # noqa: F401

    Base.metadata.create_all(get_engine())


__all__ = [
    "Base",
    "SessionLocal",
    "get_db",
    "get_engine",
    "init_db",
]
