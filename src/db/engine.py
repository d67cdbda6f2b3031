"""Async SQLAlchemy engine + session factory.

SQLite (aiosqlite) in dev and tests, PostgreSQL (asyncpg) in production.
Every webhook delivery runs in its own session; no state is shared between
deliveries except through the database.
"""
from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import settings


def _async_url(url: str) -> str:
    """Rewrite plain driver URLs to their async drivers."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


_db_url = _async_url(settings.DATABASE_URL)
_is_sqlite = _db_url.startswith("sqlite")

_engine_kwargs: dict = {"echo": False}

if not _is_sqlite:
    # Serverless-style workers: small pools, recycled often, checked before use
    _engine_kwargs.update({
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 10,
        "pool_recycle": 900,
        "pool_pre_ping": True,
    })

engine = create_async_engine(_db_url, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Dependency for FastAPI — yields an async session."""
    async with async_session() as session:
        yield session


def enable_sqlite_savepoints(sqlite_engine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINTs nest inside the transaction.

    The sqlite3 driver otherwise defers BEGIN until the first write, which makes
    RELEASE of an outermost SAVEPOINT commit the whole transaction.
    """
    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


if _is_sqlite:
    enable_sqlite_savepoints(engine)
