"""
Unit tests for the effectiveness recalculator.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import select

from core.domain.analytics import FormulaAggregate
from infrastructure.database.models import FormulaRecord
from services.effectiveness import (
    EffectivenessRecalculator,
    compute_effectiveness,
    compute_engagement_rate,
    should_apply,
)
from tests.conftest import NOW


async def formula_row(db_session, code: str) -> FormulaRecord:
    result = await db_session.execute(
        select(FormulaRecord)
        .where(FormulaRecord.code == code)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestPureScoring:
    def test_weighted_blend(self):
        aggregate = FormulaAggregate(
            formula_code="QH-01",
            window_days=30,
            count=10,
            rated_count=10,
            avg_rating=4.0,
            favorite_rate=0.5,
            usage_rate=0.5,
        )
        assert compute_effectiveness(aggregate) == 62
        assert compute_engagement_rate(aggregate) == 50

    def test_perfect_formula_scores_100(self):
        aggregate = FormulaAggregate(
            formula_code="QH-01",
            window_days=30,
            count=10,
            rated_count=10,
            avg_rating=5.0,
            favorite_rate=1.0,
            usage_rate=1.0,
        )
        assert compute_effectiveness(aggregate) == 100

    @pytest.mark.parametrize(
        "old, new, expected",
        [(70, 74, False), (70, 75, False), (70, 76, True), (70, 64, True), (70, 70, False)],
    )
    def test_damping(self, old, new, expected):
        assert should_apply(old, new) is expected


class TestEffectivenessRecalculator:
    async def test_updates_rating_and_engagement(
        self, session_factory, db_session, test_settings, make_formula, add_records
    ):
        await make_formula("QH-01", effectiveness_rating=50)
        await add_records("QH-01", 10, rating=5, was_used=True, was_favorited=True)

        summary = await EffectivenessRecalculator(session_factory, test_settings).run(now=NOW)

        assert summary.job_name == "effectiveness_recalculation"
        assert summary.succeeded == 1
        formula = await formula_row(db_session, "QH-01")
        assert formula.effectiveness_rating == 100
        assert formula.avg_engagement_rate == 100

    async def test_below_minimum_samples_is_left_alone(
        self, session_factory, db_session, test_settings, make_formula, add_records
    ):
        await make_formula("QH-01", effectiveness_rating=50)
        await add_records("QH-01", 9, rating=5, was_used=True, was_favorited=True)

        summary = await EffectivenessRecalculator(session_factory, test_settings).run(now=NOW)

        assert summary.skipped == 1
        assert (await formula_row(db_session, "QH-01")).effectiveness_rating == 50

    async def test_change_within_damping_is_discarded(
        self, session_factory, db_session, test_settings, make_formula, add_records
    ):
        await make_formula("QH-01", effectiveness_rating=60)
        # 4.0 average, everything used, nothing favorited -> 62
        await add_records("QH-01", 10, rating=4, was_used=True)

        recalculator = EffectivenessRecalculator(session_factory, test_settings)
        assert await recalculator.recalculate_formula("QH-01", NOW) is False
        assert (await formula_row(db_session, "QH-01")).effectiveness_rating == 60

    async def test_records_outside_window_do_not_count(
        self, session_factory, db_session, test_settings, make_formula, add_records
    ):
        await make_formula("QH-01", effectiveness_rating=50)
        await add_records("QH-01", 10, days_ago=45, rating=5, was_used=True)

        recalculator = EffectivenessRecalculator(session_factory, test_settings)
        assert await recalculator.recalculate_formula("QH-01", NOW) is False

    async def test_inactive_formulas_are_not_recalculated(
        self, session_factory, db_session, test_settings, make_formula, add_records
    ):
        await make_formula("OLD-01", effectiveness_rating=50, is_active=False)
        await add_records("OLD-01", 10, rating=5, was_used=True, was_favorited=True)

        summary = await EffectivenessRecalculator(session_factory, test_settings).run(now=NOW)

        assert summary.processed == 0
        assert (await formula_row(db_session, "OLD-01")).effectiveness_rating == 50

    async def test_failure_is_isolated_per_formula(
        self, session_factory, db_session, test_settings, make_formula, add_records
    ):
        for code in ("QH-01", "QH-02"):
            await make_formula(code, effectiveness_rating=50)
            await add_records(code, 10, rating=5, was_used=True, was_favorited=True)

        original = EffectivenessRecalculator.recalculate_formula

        async def flaky(self, formula_code, now):
            if formula_code == "QH-01":
                raise RuntimeError("deadlock detected")
            return await original(self, formula_code, now)

        with patch.object(EffectivenessRecalculator, "recalculate_formula", flaky):
            summary = await EffectivenessRecalculator(session_factory, test_settings).run(now=NOW)

        assert summary.failed == 1
        assert summary.succeeded == 1
        assert summary.failures[0].entity_key == "QH-01"
        assert (await formula_row(db_session, "QH-02")).effectiveness_rating == 100
