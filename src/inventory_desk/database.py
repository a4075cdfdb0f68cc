"""Database utilities."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import get_settings


class Base(DeclarativeBase):
    """Base model for SQLAlchemy mappings."""


_engine: Engine | None = None

SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover - driver hook
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_sqlite_engine(url: str, **kwargs) -> Engine:
    """Create an engine for *url* with foreign keys enforced."""

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, future=True, **kwargs)
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def get_engine() -> Engine:
    """Return a lazily created engine instance bound to ``SessionLocal``."""

    global _engine
    if _engine is None:
        _engine = create_sqlite_engine(get_settings().database_url)
        SessionLocal.configure(bind=_engine)
    return _engine


def init_database(engine: Engine | None = None) -> None:
    """Ensure that the database schema exists."""

    from . import models  # noqa: F401 - ensure models are imported

    Base.metadata.create_all(bind=engine or get_engine())
