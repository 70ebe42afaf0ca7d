"""
Effectiveness recalculator.

Blends recent ratings, favorites and usage into a 0-100 effectiveness
rating per formula. Two gates keep the rating steady: formulas with too few
recent records are never touched, and changes within the damping threshold
are discarded.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.analytics import FormulaAggregate, round_half_up
from core.domain.jobs import JobRunSummary
from core.periods import ensure_utc, utcnow
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database import async_session_maker
from infrastructure.database.models.analytics import FormulaRecord
from services.performance_aggregator import PerformanceAggregator

logger = logging.getLogger(__name__)

JOB_NAME = "effectiveness_recalculation"


def compute_effectiveness(
    aggregate: FormulaAggregate,
    rating_weight: float = 0.4,
    favorite_weight: float = 0.3,
    usage_weight: float = 0.3,
) -> int:
    """Weighted blend of normalized rating, favorite rate and usage rate, scaled to 0-100."""
    rating_score = aggregate.avg_rating / 5
    blended = (
        rating_score * rating_weight
        + aggregate.favorite_rate * favorite_weight
        + aggregate.usage_rate * usage_weight
    )
    return round_half_up(blended * 100)


def compute_engagement_rate(aggregate: FormulaAggregate) -> int:
    return round_half_up((aggregate.favorite_rate + aggregate.usage_rate) * 50)


def should_apply(old_rating: int, new_rating: int, threshold: int = 5) -> bool:
    """Apply only changes strictly larger than the damping threshold (70 -> 76 yes, 70 -> 74 no)."""
    return abs(new_rating - old_rating) > threshold


class EffectivenessRecalculator:
    """Recalculate formula effectiveness ratings, one transaction per formula."""

    job_name = JOB_NAME

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def load_active_formula_codes(self) -> list[str]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FormulaRecord.code)
                .where(FormulaRecord.is_active.is_(True))
                .order_by(FormulaRecord.code)
            )
            return list(result.scalars().all())

    async def recalculate_formula(self, formula_code: str, now: datetime) -> bool:
        """
        Recalculate one formula.

        Returns:
            True if the rating was updated, False if gated by sample size or damping
        """
        async with self.session_factory() as db:
            aggregate = await PerformanceAggregator(db).for_formula(
                formula_code, self.settings.effectiveness_window_days, now
            )

            if aggregate.count < self.settings.effectiveness_min_samples:
                logger.debug(
                    f"Formula {formula_code} has {aggregate.count} records; "
                    f"needs {self.settings.effectiveness_min_samples} to recalculate",
                    extra={"job": JOB_NAME, "formula_code": formula_code},
                )
                return False

            result = await db.execute(
                select(FormulaRecord.effectiveness_rating).where(FormulaRecord.code == formula_code)
            )
            old_rating = result.scalar_one()

            new_rating = compute_effectiveness(
                aggregate,
                rating_weight=self.settings.effectiveness_rating_weight,
                favorite_weight=self.settings.effectiveness_favorite_weight,
                usage_weight=self.settings.effectiveness_usage_weight,
            )
            if not should_apply(old_rating, new_rating, self.settings.effectiveness_damping):
                logger.debug(
                    f"Formula {formula_code} effectiveness change {old_rating} -> {new_rating} "
                    "within damping threshold",
                    extra={"job": JOB_NAME, "formula_code": formula_code},
                )
                return False

            await db.execute(
                update(FormulaRecord)
                .where(FormulaRecord.code == formula_code)
                .values(
                    effectiveness_rating=new_rating,
                    avg_engagement_rate=compute_engagement_rate(aggregate),
                    updated_at=now,
                )
            )
            await db.commit()

        logger.info(
            f"Updated formula {formula_code} effectiveness: {old_rating} -> {new_rating}",
            extra={"job": JOB_NAME, "formula_code": formula_code},
        )
        return True

    async def run(self, now: Optional[datetime] = None) -> JobRunSummary:
        """Recalculate every active formula; per-formula failures are isolated."""
        now = ensure_utc(now or utcnow())
        summary = JobRunSummary(job_name=JOB_NAME, started_at=utcnow())

        for formula_code in await self.load_active_formula_codes():
            try:
                updated = await self.recalculate_formula(formula_code, now)
            except Exception as e:
                logger.error(
                    f"Effectiveness recalculation failed for formula {formula_code}: {e}",
                    exc_info=True,
                    extra={"job": JOB_NAME, "formula_code": formula_code},
                )
                summary.record_failure(formula_code, e)
                continue

            if updated:
                summary.record_success()
            else:
                summary.record_skip()

        return summary.finish()
