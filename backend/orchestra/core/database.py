"""
Orchestra - Database Connection
================================

Async SQLAlchemy engine, session factory and session helpers shared by the
API (request-scoped sessions) and the queue worker (job-scoped sessions).
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from orchestra.core.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# ==========================================================================
# Engine Setup
# ==========================================================================

def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine; SQLite gets no pool sizing."""
    url = database_url or settings.DATABASE_URL
    if "sqlite" in url:
        return create_async_engine(
            url,
            echo=settings.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,
    )


engine = create_engine()


# ==========================================================================
# Session Factory
# ==========================================================================

# expire_on_commit=False: pipelines keep reading task/epic attributes
# after each commit without triggering implicit (sync) reloads.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ==========================================================================
# Session Dependencies
# ==========================================================================

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a request-scoped session.

    Usage:
        @router.get("/epics")
        async def list_epics(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for sessions outside the request cycle (queue jobs).

    Usage:
        async with get_db_session() as session:
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ==========================================================================
# Lifecycle
# ==========================================================================

async def init_db() -> None:
    """Create tables if they do not exist (development convenience)."""
    async with engine.begin() as conn:
        from orchestra.core import models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of pooled connections."""
    await engine.dispose()
