"""
Database session management for the geofence backend.

Uses SQLAlchemy 2.x style `Session` and declarative models. Provides a
session factory and dependency helper for use with FastAPI, a simple
context manager for synchronous code outside requests, and the
`transaction` helper used for the logically-atomic writes of the stores.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings
from .errors import TransactionRollbackError, log_exception


logger = logging.getLogger("db")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_recycle": 1800,
        "pool_timeout": 30,
    }


# Create SQLAlchemy engine
engine = create_engine(settings.database_url, echo=False, future=True, **_engine_kwargs(settings.database_url))


if engine.dialect.name == "postgresql":

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_conn, _record) -> None:
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute(f"SET statement_timeout = {int(settings.db_statement_timeout_ms)}")
            if settings.geofence_schema:
                cursor.execute(f'SET search_path TO "{settings.geofence_schema}"')
        finally:
            cursor.close()


# Create a configured session factory
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    """Yield a database session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class SessionContext:
    """Context manager for database sessions outside of FastAPI."""

    def __enter__(self):
        self.db = SessionLocal()
        return self.db

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.db.close()


@contextmanager
def transaction(db: Session, *, name: str = "transaction") -> Iterator[Session]:
    """
    Commit the work done inside the block, or roll it back on any error.

    The original error is re-raised after a successful rollback. When the
    rollback itself fails the database may hold a half-applied write, so a
    TransactionRollbackError chained to the original failure is raised instead.
    """
    try:
        yield db
        db.commit()
    except Exception as exc:
        try:
            db.rollback()
        except Exception as rollback_exc:
            log_exception(logger, "Rollback failed", extra={"tx": name}, exc=rollback_exc)
            raise TransactionRollbackError(detail=f"{name}: {rollback_exc}") from exc
        log_exception(logger, "Transaction rolled back", extra={"tx": name}, exc=exc)
        raise
