"""Async engine and session plumbing."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from smartpick_api.core.settings import settings


def configure_sqlite_locking(engine: AsyncEngine) -> None:
    """Open every SQLite transaction with ``BEGIN IMMEDIATE``.

    SQLite ignores ``FOR UPDATE``; taking the write lock up front serializes read-modify-write
    sequences the same way a row lock does on PostgreSQL, and lets savepoints work.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str | None = None, **kwargs) -> AsyncEngine:
    url = database_url or settings.database_url
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"timeout": settings.sqlite_busy_timeout_seconds})
    engine = create_async_engine(url, echo=settings.database_echo, future=True, **kwargs)
    if is_sqlite:
        configure_sqlite_locking(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = build_engine()
async_session = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session


__all__ = [
    "async_session",
    "build_engine",
    "build_session_factory",
    "configure_sqlite_locking",
    "engine",
    "get_session",
    "get_session_factory",
]
