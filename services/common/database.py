"""Async SQLAlchemy helpers shared across services."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import MetaData, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import ServiceSettings

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, async_sessionmaker[AsyncSession]] = {}

SQLITE_BUSY_TIMEOUT_MS = 5000


def _enable_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    # Concurrent stock writers wait for the lock instead of failing at once.
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def create_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create or reuse a cached AsyncEngine for the given URL."""

    if database_url in _ENGINE_CACHE:
        return _ENGINE_CACHE[database_url]

    engine = create_async_engine(database_url, pool_pre_ping=True, **kwargs)
    if make_url(database_url).get_backend_name() == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_pragmas)
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


async def ensure_schema(database_url: str, metadata: MetaData) -> async_sessionmaker[AsyncSession]:
    """Create missing tables for ``metadata`` and return the URL's session factory."""

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    return get_session_factory(database_url)


@asynccontextmanager
async def lifespan_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Provide an AsyncSession that commits on success and rolls back on error or cancellation."""

    session = session_factory()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


def resolve_database_url(settings: ServiceSettings, fallback: str) -> str:
    """Pick the restricted-credential URL from settings or fallback."""

    return settings.database_url or fallback


def resolve_elevated_database_url(settings: ServiceSettings, fallback: str) -> str:
    """Pick the elevated-credential URL, defaulting to the restricted one."""

    return settings.elevated_database_url or resolve_database_url(settings, fallback)


async def dispose_engines() -> None:
    """Dispose all cached engines (used on shutdown or tests)."""

    for engine in _ENGINE_CACHE.values():
        await engine.dispose()
    _ENGINE_CACHE.clear()
    _SESSION_FACTORY_CACHE.clear()
