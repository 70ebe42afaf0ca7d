"""
Trend recomputation job.

Derives usage velocity and audience fatigue per formula (and optionally
per platform) from fresh aggregates and upserts one trend row per key.
Every run recomputes from source records, so overlapping or repeated runs
converge on the same rows instead of double counting.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.analytics import (
    ALL_PLATFORMS,
    FormulaAggregate,
    TrendDirection,
    clamp,
    round_half_up,
)
from core.domain.jobs import JobRunSummary
from core.periods import ensure_utc, utcnow
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database import async_session_maker
from infrastructure.database.models.analytics import FormulaRecord, TrendRecord
from infrastructure.database.upsert import upsert
from services.performance_aggregator import PerformanceAggregator

logger = logging.getLogger(__name__)

JOB_NAME = "trend_recomputation"

TREND_UPDATE_COLUMNS = (
    "weekly_usage",
    "monthly_usage",
    "avg_performance_score",
    "trend_direction",
    "fatigue_level",
    "last_calculated",
    "data_points",
    "updated_at",
)


def classify_trend(weekly_usage: int, monthly_usage: int, band: float = 0.2) -> TrendDirection:
    """
    Compare weekly usage against a quarter of the monthly usage.

    Outside a +/- ``band`` hysteresis around the expected weekly share the
    formula is rising or falling; inside it, stable. With monthly=100:
    31 is rising, 30 stable, 19 falling.
    """
    expected_weekly = monthly_usage / 4
    if weekly_usage > expected_weekly * (1 + band):
        return TrendDirection.RISING
    if weekly_usage < expected_weekly * (1 - band):
        return TrendDirection.FALLING
    return TrendDirection.STABLE


def fatigue_level(
    effectiveness_rating: int,
    recent_avg_rating: float,
    gap_threshold: float = 1.0,
    score: int = 50,
    scoring: str = "binary",
) -> int:
    """
    Fatigue from the gap between long-run effectiveness and recent ratings.

    Both sides are normalized to 0-1 (``effectiveness/100`` and
    ``rating/5``). In ``binary`` mode a gap above ``gap_threshold`` yields
    ``score`` and anything else 0; ``linear`` mode scales the positive gap
    to 0-100.
    """
    gap = effectiveness_rating / 100 - recent_avg_rating / 5

    if scoring == "linear":
        return round_half_up(clamp(gap, 0.0, 1.0) * 100)

    level = score if gap > gap_threshold else 0
    return int(clamp(level, 0, 100))


class TrendRecomputationJob:
    """Recompute trend rows for every active formula, one transaction per formula."""

    job_name = JOB_NAME

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def load_active_formulas(self) -> list[tuple[str, int]]:
        """Return ``(code, effectiveness_rating)`` for every active formula."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(FormulaRecord.code, FormulaRecord.effectiveness_rating)
                .where(FormulaRecord.is_active.is_(True))
                .order_by(FormulaRecord.code)
            )
            return [(code, rating) for code, rating in result.all()]

    def trend_values(
        self,
        formula_code: str,
        platform: str,
        effectiveness_rating: int,
        weekly: FormulaAggregate,
        monthly: FormulaAggregate,
        now: datetime,
    ) -> dict:
        """Build the trend row for one ``(formula_code, platform)`` key."""
        return {
            "formula_code": formula_code,
            "platform": platform,
            "weekly_usage": weekly.count,
            "monthly_usage": monthly.count,
            "avg_performance_score": round_half_up(monthly.avg_rating * 20),
            "trend_direction": classify_trend(
                weekly.count, monthly.count, self.settings.trend_band
            ).value,
            "fatigue_level": fatigue_level(
                effectiveness_rating,
                monthly.avg_rating,
                gap_threshold=self.settings.fatigue_gap_threshold,
                score=self.settings.fatigue_score,
                scoring=self.settings.fatigue_scoring,
            ),
            "last_calculated": now,
            "data_points": monthly.count,
            "updated_at": now,
        }

    async def platforms_to_refresh(
        self, db: AsyncSession, formula_code: str, window_days: int, now: datetime
    ) -> list[str]:
        """
        ``"all"`` first, then every platform that already has a trend row, so
        platforms that dropped out of the window are rewritten to zero.
        With ``trend_per_platform`` the platforms seen in the window are added.
        """
        result = await db.execute(
            select(TrendRecord.platform).where(TrendRecord.formula_code == formula_code)
        )
        platforms = set(result.scalars().all())
        if self.settings.trend_per_platform:
            platforms |= set(
                await PerformanceAggregator(db).platforms_for(formula_code, window_days, now)
            )
        platforms.discard(ALL_PLATFORMS)
        return [ALL_PLATFORMS, *sorted(platforms)]

    async def recompute_formula(
        self, formula_code: str, effectiveness_rating: int, now: datetime
    ) -> list[dict]:
        """Upsert the trend rows of one formula and commit them together."""
        weekly_days = self.settings.trend_weekly_window_days
        monthly_days = self.settings.trend_monthly_window_days
        rows = []

        async with self.session_factory() as db:
            aggregator = PerformanceAggregator(db)

            platforms = await self.platforms_to_refresh(db, formula_code, monthly_days, now)
            for platform in platforms:
                platform_filter = None if platform == ALL_PLATFORMS else platform
                weekly = await aggregator.for_formula(formula_code, weekly_days, now, platform_filter)
                monthly = await aggregator.for_formula(formula_code, monthly_days, now, platform_filter)

                values = self.trend_values(
                    formula_code, platform, effectiveness_rating, weekly, monthly, now
                )
                await upsert(
                    db,
                    TrendRecord,
                    values,
                    conflict_columns=("formula_code", "platform"),
                    update_columns=TREND_UPDATE_COLUMNS,
                )
                rows.append(values)

            await db.commit()

        return rows

    async def run(self, now: Optional[datetime] = None) -> JobRunSummary:
        """
        Recompute trends for all active formulas.

        A failing formula is logged with its code and recorded in the
        summary; the remaining formulas still run.
        """
        now = ensure_utc(now or utcnow())
        summary = JobRunSummary(job_name=JOB_NAME, started_at=utcnow())

        formulas = await self.load_active_formulas()
        logger.info(f"Recomputing trends for {len(formulas)} active formulas")

        for formula_code, effectiveness_rating in formulas:
            try:
                await self.recompute_formula(formula_code, effectiveness_rating, now)
            except Exception as e:
                logger.error(
                    f"Trend recomputation failed for formula {formula_code}: {e}",
                    exc_info=True,
                    extra={"job": JOB_NAME, "formula_code": formula_code},
                )
                summary.record_failure(formula_code, e)
                continue
            summary.record_success()

        return summary.finish()
