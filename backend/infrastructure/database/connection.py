"""Database connection and session management."""
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..config import get_settings
from .models.base import Base

settings = get_settings()


def _engine_kwargs() -> Dict[str, Any]:
    """Pool options for the configured backend. SQLite has no connection pool sizing."""
    if settings.database_url.startswith("sqlite"):
        return {"echo": settings.database_echo}

    # Enforce SSL for database connections in production
    connect_args = {"ssl": "require"} if settings.environment == "production" else {}
    return {
        "echo": settings.database_echo,
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": 10,
        "pool_recycle": 3600,
        "connect_args": connect_args,
    }


# Create async engine
engine = create_async_engine(settings.database_url, **_engine_kwargs())

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create tables directly from metadata (development only; production uses alembic)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
