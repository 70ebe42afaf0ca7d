"""
Unit tests for trend classification, fatigue scoring and the recomputation job.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from core.domain.analytics import TrendDirection
from core.periods import ensure_utc
from infrastructure.config.settings import Settings
from infrastructure.database.models import TrendRecord
from services.trend_recomputation import (
    TrendRecomputationJob,
    classify_trend,
    fatigue_level,
)
from tests.conftest import NOW, TEST_DATABASE_URL


def job_settings(**overrides) -> Settings:
    return Settings(
        environment="test",
        scheduler_enabled=False,
        database_url=TEST_DATABASE_URL,
        **overrides,
    )


async def trend_rows(db_session) -> list[TrendRecord]:
    result = await db_session.execute(
        select(TrendRecord)
        .order_by(TrendRecord.formula_code, TrendRecord.platform)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# ============================================================================
# Pure helpers
# ============================================================================


class TestClassifyTrend:
    @pytest.mark.parametrize(
        "weekly, expected",
        [
            (31, TrendDirection.RISING),
            (30, TrendDirection.STABLE),
            (25, TrendDirection.STABLE),
            (20, TrendDirection.STABLE),
            (19, TrendDirection.FALLING),
        ],
    )
    def test_hysteresis_band_at_monthly_100(self, weekly, expected):
        assert classify_trend(weekly, 100) == expected

    def test_no_usage_is_stable(self):
        assert classify_trend(0, 0) == TrendDirection.STABLE

    def test_first_week_of_usage_is_rising(self):
        assert classify_trend(4, 4) == TrendDirection.RISING


class TestFatigueLevel:
    def test_binary_default_threshold_never_fires_on_normalized_gap(self):
        assert fatigue_level(100, 0.0) == 0

    def test_binary_above_threshold(self):
        assert fatigue_level(80, 2.0, gap_threshold=0.3) == 50

    def test_binary_below_threshold_is_not_fatigued(self):
        assert fatigue_level(80, 3.0, gap_threshold=0.3) == 0

    def test_linear_scales_gap(self):
        assert fatigue_level(80, 2.0, scoring="linear") == 40

    def test_linear_clamps_negative_gap(self):
        assert fatigue_level(20, 5.0, scoring="linear") == 0

    def test_custom_score(self):
        assert fatigue_level(90, 1.0, gap_threshold=0.5, score=70) == 70


# ============================================================================
# Job
# ============================================================================


class TestTrendRecomputationJob:
    async def test_run_writes_one_row_per_formula(
        self, session_factory, db_session, make_formula, add_records
    ):
        await make_formula("QH-01", effectiveness_rating=80)
        await add_records("QH-01", 3, days_ago=2, rating=2)
        await add_records("QH-01", 9, days_ago=20, rating=2)

        job = TrendRecomputationJob(session_factory, job_settings(fatigue_gap_threshold=0.3))
        summary = await job.run(now=NOW)

        assert summary.job_name == "trend_recomputation"
        assert summary.succeeded == 1
        assert summary.failed == 0

        rows = await trend_rows(db_session)
        assert len(rows) == 1
        trend = rows[0]
        assert trend.platform == "all"
        assert trend.weekly_usage == 3
        assert trend.monthly_usage == 12
        assert trend.data_points == 12
        assert trend.avg_performance_score == 40
        assert trend.trend_direction == "stable"
        assert trend.fatigue_level == 50

    async def test_rerun_updates_in_place(
        self, session_factory, db_session, make_formula, add_records
    ):
        await make_formula("QH-01")
        await add_records("QH-01", 4, days_ago=2, rating=5)
        job = TrendRecomputationJob(session_factory, job_settings())

        await job.run(now=NOW)
        await add_records("QH-01", 4, days_ago=1, rating=5)
        await job.run(now=NOW)

        rows = await trend_rows(db_session)
        assert len(rows) == 1
        assert rows[0].weekly_usage == 8
        assert rows[0].trend_direction == "rising"

    async def test_formula_without_records_gets_zero_row(
        self, session_factory, db_session, make_formula
    ):
        await make_formula("NEW-01")

        await TrendRecomputationJob(session_factory, job_settings()).run(now=NOW)

        rows = await trend_rows(db_session)
        assert [(r.formula_code, r.monthly_usage, r.trend_direction) for r in rows] == [
            ("NEW-01", 0, "stable")
        ]

    async def test_inactive_formulas_are_skipped(
        self, session_factory, db_session, make_formula, add_records
    ):
        await make_formula("OLD-01", is_active=False)
        await add_records("OLD-01", 5)

        summary = await TrendRecomputationJob(session_factory, job_settings()).run(now=NOW)

        assert summary.processed == 0
        assert await trend_rows(db_session) == []

    async def test_per_platform_rows(
        self, session_factory, db_session, make_formula, add_records
    ):
        await make_formula("QH-01")
        await add_records("QH-01", 2, platform="tiktok")
        await add_records("QH-01", 1, platform="youtube")

        job = TrendRecomputationJob(session_factory, job_settings(trend_per_platform=True))
        await job.run(now=NOW)

        rows = await trend_rows(db_session)
        assert [(r.platform, r.weekly_usage) for r in rows] == [
            ("all", 3),
            ("tiktok", 2),
            ("youtube", 1),
        ]

    async def test_platform_that_leaves_the_window_is_zeroed(
        self, session_factory, db_session, make_formula, add_records
    ):
        await make_formula("QH-01")
        await add_records("QH-01", 8, platform="tiktok")
        job = TrendRecomputationJob(session_factory, job_settings(trend_per_platform=True))

        await job.run(now=NOW)
        later = NOW + timedelta(days=40)
        await job.run(now=later)

        rows = await trend_rows(db_session)
        assert [(r.platform, r.weekly_usage, r.monthly_usage) for r in rows] == [
            ("all", 0, 0),
            ("tiktok", 0, 0),
        ]
        assert all(ensure_utc(r.last_calculated) == later for r in rows)

    async def test_records_tagged_all_do_not_duplicate_the_aggregate_row(
        self, session_factory, db_session, make_formula, add_records
    ):
        await make_formula("QH-01")
        await add_records("QH-01", 2, platform="all")
        await add_records("QH-01", 1, platform="tiktok")

        job = TrendRecomputationJob(session_factory, job_settings(trend_per_platform=True))
        rows = await job.recompute_formula("QH-01", 50, NOW)

        assert [(r["platform"], r["weekly_usage"]) for r in rows] == [("all", 3), ("tiktok", 1)]

    async def test_failing_formula_does_not_stop_the_run(
        self, session_factory, db_session, make_formula, add_records
    ):
        for code in ("QH-01", "QH-02", "QH-03"):
            await make_formula(code)
            await add_records(code, 2)

        original = TrendRecomputationJob.recompute_formula

        async def flaky(self, formula_code, effectiveness_rating, now):
            if formula_code == "QH-02":
                raise RuntimeError("aggregate query timed out")
            return await original(self, formula_code, effectiveness_rating, now)

        with patch.object(TrendRecomputationJob, "recompute_formula", flaky):
            summary = await TrendRecomputationJob(session_factory, job_settings()).run(now=NOW)

        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.failures[0].entity_key == "QH-02"
        assert [r.formula_code for r in await trend_rows(db_session)] == ["QH-01", "QH-03"]
