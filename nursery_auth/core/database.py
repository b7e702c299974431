"""
Database configuration and session management
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from nursery_auth.config import settings

_engine_options: dict[str, Any] = {
    "echo": settings.DB_ECHO,
    "pool_pre_ping": True,  # Verify connections before using
}
# SQLite (local development, tests) has no connection pool to size
if not settings.DATABASE_URL.startswith("sqlite"):
    _engine_options.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=3600,  # MariaDB wait_timeout is 8 hours
    )

# Create async engine
engine = create_async_engine(settings.DATABASE_URL, **_engine_options)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


def utcnow() -> datetime:
    """
    Current time as a naive UTC datetime.

    DATETIME columns come back timezone-naive from both MariaDB and SQLite,
    so every timestamp written or compared by this service uses this form.
    """
    return datetime.now(UTC).replace(tzinfo=None)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Usage in FastAPI:
        @router.post("/auth/send-code")
        async def send_code(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_async_session() -> AsyncSession:
    """
    Get a standalone async database session for scripts.

    Use with 'async with':
        async with get_async_session() as db:
            await db.execute(...)
            await db.commit()

    Note: Caller is responsible for committing/rolling back.
    """
    return AsyncSessionLocal()
