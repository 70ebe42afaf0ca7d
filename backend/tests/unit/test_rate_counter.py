"""
Unit tests for the durable rate counter.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from infrastructure.database.models import RateCounter
from services.rate_counter import DurableRateCounter, window_start_for
from tests.conftest import NOW


def test_window_start_aligns_to_fixed_windows():
    assert window_start_for(NOW + timedelta(seconds=59), 60) == NOW
    assert window_start_for(NOW + timedelta(seconds=60), 60) == NOW + timedelta(seconds=60)


class TestDurableRateCounter:
    async def test_counts_hits_within_window(self, db_session):
        counter = DurableRateCounter(db_session)

        first = await counter.hit("login:203.0.113.7", limit=3, window_seconds=60, now=NOW)
        second = await counter.hit(
            "login:203.0.113.7", limit=3, window_seconds=60, now=NOW + timedelta(seconds=10)
        )

        assert first.allowed and first.hits == 1
        assert second.allowed and second.hits == 2
        assert second.remaining == 1
        assert second.reset_at == NOW + timedelta(seconds=60)

    async def test_rejects_once_limit_exceeded(self, db_session):
        counter = DurableRateCounter(db_session)
        decisions = [
            await counter.hit("generate:user_a", limit=2, window_seconds=60, now=NOW)
            for _ in range(3)
        ]

        assert [d.allowed for d in decisions] == [True, True, False]
        assert decisions[-1].remaining == 0

    async def test_new_window_starts_fresh(self, db_session):
        counter = DurableRateCounter(db_session)
        for _ in range(2):
            await counter.hit("generate:user_a", limit=2, window_seconds=60, now=NOW)

        later = await counter.hit(
            "generate:user_a", limit=2, window_seconds=60, now=NOW + timedelta(seconds=61)
        )
        assert later.allowed
        assert later.hits == 1

    async def test_keys_are_independent(self, db_session):
        counter = DurableRateCounter(db_session)
        await counter.hit("generate:user_a", limit=1, window_seconds=60, now=NOW)

        other = await counter.hit("generate:user_b", limit=1, window_seconds=60, now=NOW)
        assert other.allowed

    async def test_invalid_window_raises(self, db_session):
        with pytest.raises(ValueError):
            await DurableRateCounter(db_session).hit("k", limit=1, window_seconds=0, now=NOW)

    async def test_purge_expired_windows(self, db_session):
        counter = DurableRateCounter(db_session)
        await counter.hit("k", limit=5, window_seconds=60, now=NOW)
        await counter.hit("k", limit=5, window_seconds=60, now=NOW + timedelta(seconds=120))
        await db_session.commit()

        purged = await counter.purge_expired(now=NOW + timedelta(seconds=90))
        await db_session.commit()

        assert purged == 1
        result = await db_session.execute(select(func.count()).select_from(RateCounter))
        assert result.scalar_one() == 1
