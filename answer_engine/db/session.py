"""
Async engine and session factory.

Services receive the ``async_sessionmaker`` rather than a session so that
concurrent searches each open their own session.
"""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from answer_engine.config import get_settings
from answer_engine.db.base import Base


@lru_cache
def get_engine() -> AsyncEngine:
    settings = get_settings()
    if settings.database_url.startswith('sqlite'):
        return create_async_engine(settings.database_url)
    return create_async_engine(settings.database_url, pool_pre_ping=True, pool_size=10, max_overflow=20)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables; used by tests and local sqlite runs. Production uses alembic."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
