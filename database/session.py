"""
Async SQLAlchemy engine / session factory.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from database.models import Base


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the engine; pool sizing only applies to server databases."""
    kwargs = {}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=3600, pool_pre_ping=True)
    return create_async_engine(database_url, echo=echo, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
