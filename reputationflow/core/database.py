"""Database engine and session factory for the credit ledger store."""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .settings import get_settings

# Concurrent ledger updates on SQLite wait on the file lock instead of failing.
SQLITE_BUSY_TIMEOUT_SECONDS = 30


class Base(DeclarativeBase):
    """Base declarative class for all ORM models."""


def create_database_engine(url: str) -> Engine:
    connect_args: dict = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    return create_engine(url, echo=False, future=True, pool_pre_ping=True, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    # Ledger rows are re-read explicitly after conditional updates, so objects
    # stay usable across commits.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


_engine = create_database_engine(get_settings().resolved_database_url)
SessionLocal = make_session_factory(_engine)


def init_database(engine: Engine | None = None) -> None:
    """Create database tables for the current metadata."""
    import reputationflow.core.models  # noqa: F401 ensures models are registered

    Base.metadata.create_all(bind=engine or _engine)


__all__ = [
    "Base",
    "SessionLocal",
    "SQLITE_BUSY_TIMEOUT_SECONDS",
    "create_database_engine",
    "init_database",
    "make_session_factory",
]
