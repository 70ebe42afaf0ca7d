"""
Pytest configuration and shared fixtures for backend tests.
"""

import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from core.plans import plan_limits
from infrastructure.config.settings import Settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Base,
    FormulaRecord,
    PerformanceRecord,
    UsageLedgerEntry,
    User,
)


# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed evaluation time so window arithmetic is deterministic
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory for jobs that open one session per unit of work."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with the scheduler off and default tuning constants."""
    return Settings(
        environment="test",
        scheduler_enabled=False,
        database_url=TEST_DATABASE_URL,
    )


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Seed Helpers
# ============================================================================


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory for plan assignments written by the billing layer."""

    async def _make(plan: str = "free", user_id: Optional[str] = None) -> User:
        user = User(id=user_id or f"user_{uuid4().hex[:12]}", subscription_plan=plan)
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_ledger_entry(db_session: AsyncSession):
    """
    Factory for a current usage ledger entry.

    By default the period started a day ago and ends in six days, so it is
    Active against the real clock.
    """

    async def _make(
        user_id: Optional[str] = None,
        plan: str = "free",
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        **counters,
    ) -> UsageLedgerEntry:
        limits = plan_limits(plan)
        now = datetime.now(timezone.utc)
        start = period_start or now - timedelta(days=1)
        end = period_end or start + timedelta(days=7)

        entry = UsageLedgerEntry(
            user_id=user_id or f"user_{uuid4().hex[:12]}",
            plan_id=plan,
            period_start=start,
            period_end=end,
            billing_anchor_day=start.day,
            primary_limit=limits.primary_limit,
            secondary_limit=limits.secondary_limit,
            max_overage=limits.max_overage,
            last_reset_at=start,
            next_reset_at=end,
            is_current=True,
            **counters,
        )
        db_session.add(entry)
        await db_session.commit()
        return entry

    return _make


@pytest.fixture
def make_formula(db_session: AsyncSession):
    """Factory for hook formulas."""

    async def _make(
        code: str = "QH-01",
        effectiveness_rating: int = 50,
        is_active: bool = True,
    ) -> FormulaRecord:
        formula = FormulaRecord(
            code=code,
            name=f"Formula {code}",
            effectiveness_rating=effectiveness_rating,
            is_active=is_active,
        )
        db_session.add(formula)
        await db_session.commit()
        return formula

    return _make


@pytest.fixture
def add_records(db_session: AsyncSession):
    """
    Append ``count`` identical performance records ``days_ago`` before ``NOW``.
    """

    async def _add(
        formula_code: str,
        count: int,
        days_ago: float = 1,
        rating: Optional[int] = None,
        was_used: bool = False,
        was_favorited: bool = False,
        platform: str = "tiktok",
        user_id: str = "user_a",
        now: datetime = NOW,
    ) -> None:
        recorded_at = now - timedelta(days=days_ago)
        for _ in range(count):
            db_session.add(
                PerformanceRecord(
                    user_id=user_id,
                    formula_code=formula_code,
                    platform=platform,
                    rating=rating,
                    was_used=was_used,
                    was_favorited=was_favorited,
                    recorded_at=recorded_at,
                )
            )
        await db_session.commit()

    return _add
