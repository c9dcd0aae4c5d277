"""Database session management utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .base import Base
from .session import SessionLocal, engine as _engine

LOGGER = structlog.get_logger(__name__)


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a session the caller commits explicitly; errors roll it back."""

    session = SessionLocal()
    try:
        yield session
    except Exception as exc:
        session.rollback()
        LOGGER.debug("session_rolled_back", error_type=type(exc).__name__)
        raise
    finally:
        session.close()


def get_session_dependency() -> Iterator[Session]:
    """FastAPI dependency wrapping :func:`get_session`."""

    with get_session() as session:
        yield session


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back on error.

    Package generation writes its final state through one of these so the
    sent flags and the invoice status land in a single transaction.
    """

    with get_session() as session:
        yield session
        session.commit()


def get_engine() -> Engine:
    return _engine


def create_tables() -> None:
    """Create every mapped table that does not exist yet."""

    from app.backend.src import models  # noqa: F401  # registers mappers

    Base.metadata.create_all(bind=_engine)


__all__ = [
    "Base",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_dependency",
    "session_scope",
]
