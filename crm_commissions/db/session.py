"""
Async SQLAlchemy engine and session factory.

Commission and rule writes go through ``UnitOfWork``, which commits on
its own. The helpers here hand out plain sessions for health checks and
startup, and never commit.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from crm_commissions.config import settings

engine = create_async_engine(
    settings.database_url,
    pool_pre_ping=True,
    echo=not settings.is_production,  # SQL logging in dev
)

# Aggregates are read back after commit, so nothing may expire
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for a read-only session.
    Usage:
        @router.get("/ready")
        async def ready(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session outside a request (startup, scripts); rolled back on exit."""
    async with AsyncSessionLocal() as session:
        yield session


async def ping(session: AsyncSession) -> None:
    """Round-trip to the database; raises if it is unreachable."""
    await session.execute(text("SELECT 1"))
