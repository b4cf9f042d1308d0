"""Database engine and session management for the step-up engine."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from .config import Settings, settings as default_settings


def create_engine(config: Optional[Settings] = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    config = config or default_settings

    if config.ENVIRONMENT == "test" or config.DATABASE_URL.startswith("sqlite"):
        return create_async_engine(
            config.DATABASE_URL,
            echo=config.DEBUG,
            poolclass=NullPool,
        )

    return create_async_engine(
        config.DATABASE_URL,
        echo=config.DEBUG,
        pool_size=config.DATABASE_POOL_SIZE,
        max_overflow=config.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory shared by the repositories."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all step-up tables."""
    from .models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_connections(engine: AsyncEngine) -> None:
    """Close all database connections."""
    await engine.dispose()
