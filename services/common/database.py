"""Async SQLAlchemy helpers for the inventory service."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import ServiceSettings

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, async_sessionmaker[AsyncSession]] = {}


def create_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create or reuse a cached AsyncEngine for the given URL."""

    if database_url in _ENGINE_CACHE:
        return _ENGINE_CACHE[database_url]

    if database_url.startswith("sqlite"):
        # Concurrent writers wait on SQLite's file lock instead of failing fast.
        kwargs.setdefault("connect_args", {"timeout": 30})
    engine = create_async_engine(database_url, pool_pre_ping=True, **kwargs)
    _ENGINE_CACHE[database_url] = engine
    return engine


def get_session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    """Return an async_sessionmaker bound to the cached engine."""

    if database_url in _SESSION_FACTORY_CACHE:
        return _SESSION_FACTORY_CACHE[database_url]

    engine = create_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    _SESSION_FACTORY_CACHE[database_url] = session_factory
    return session_factory


@asynccontextmanager
async def lifespan_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Provide an AsyncSession that commits on success and rolls back otherwise.

    Rollback and close also run when the task is cancelled, so a cancelled
    request never returns its connection with a write transaction still open.
    """

    session = session_factory()
    try:
        yield session
        await session.commit()
    except BaseException:
        await asyncio.shield(session.rollback())
        raise
    finally:
        await asyncio.shield(session.close())


async def create_schema(database_url: str, metadata: MetaData) -> None:
    """Create all tables of ``metadata`` (local development, tests, scripts)."""

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


def resolve_database_url(settings: ServiceSettings, fallback: str) -> str:
    """Pick database URL from settings or fallback."""

    return settings.database_url or fallback


async def dispose_engines() -> None:
    """Dispose all cached engines (used on shutdown or tests)."""

    for engine in _ENGINE_CACHE.values():
        await engine.dispose()
    _ENGINE_CACHE.clear()
    _SESSION_FACTORY_CACHE.clear()
