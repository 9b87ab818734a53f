"""Async database engine, session factory and FastAPI session dependency."""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.configs import configs

logger = logging.getLogger(__name__)

DATABASE_URL = configs.Database.url


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        # In-memory SQLite: share one connection so every session sees the same tables
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "pool_size": configs.Database.Postgres.PoolSize,
        "max_overflow": configs.Database.Postgres.MaxOverflow,
        "pool_pre_ping": True,
    }


async_engine = create_async_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a database session."""
    async with AsyncSessionLocal() as session:
        yield session


async def create_db_and_tables() -> None:
    """Create all tables registered on the SQLModel metadata."""
    import billing.models  # noqa: F401  registers table models

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ensured (%s)", configs.Database.Engine)


__all__ = ["async_engine", "AsyncSessionLocal", "get_session", "create_db_and_tables"]
