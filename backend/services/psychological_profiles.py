"""
Psychological profile job.

Partitions the performance stream by user and records which formulas each
user responds to. Profiles are derived data: every run rebuilds them from
the last 30 days of records.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.analytics import UserFormulaAggregate
from core.domain.jobs import JobRunSummary
from core.periods import ensure_utc, utcnow
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database import async_session_maker
from infrastructure.database.models.analytics import PsychologicalProfile
from infrastructure.database.upsert import upsert
from services.performance_aggregator import PerformanceAggregator

logger = logging.getLogger(__name__)

JOB_NAME = "psychological_profiles"

SUCCESS_MIN_RATING = 4.0
SUCCESS_MIN_FAVORITE_RATE = 0.3
UNDERPERFORMING_MAX_RATING = 2.0
UNDERPERFORMING_MAX_FAVORITE_RATE = 0.1


def is_successful(aggregate: UserFormulaAggregate) -> bool:
    return (
        aggregate.avg_rating >= SUCCESS_MIN_RATING
        or aggregate.favorite_rate >= SUCCESS_MIN_FAVORITE_RATE
    )


def is_underperforming(aggregate: UserFormulaAggregate) -> bool:
    return (
        aggregate.avg_rating <= UNDERPERFORMING_MAX_RATING
        and aggregate.favorite_rate <= UNDERPERFORMING_MAX_FAVORITE_RATE
    )


def classify_formulas(aggregates: list[UserFormulaAggregate]) -> tuple[list[str], list[str]]:
    """Split one user's formulas into ``(successful, underperforming)`` codes."""
    successful = [a.formula_code for a in aggregates if is_successful(a)]
    underperforming = [a.formula_code for a in aggregates if is_underperforming(a)]
    return successful, underperforming


class PsychologicalProfileJob:
    """Rebuild per-user formula preferences, one transaction per user."""

    job_name = JOB_NAME

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def load_user_aggregates(self, now: datetime) -> dict[str, list[UserFormulaAggregate]]:
        async with self.session_factory() as db:
            aggregates = await PerformanceAggregator(db).by_user(
                self.settings.profile_window_days,
                min_records=self.settings.profile_min_records,
                now=now,
            )

        by_user: dict[str, list[UserFormulaAggregate]] = defaultdict(list)
        for aggregate in aggregates:
            by_user[aggregate.user_id].append(aggregate)
        return by_user

    async def update_profile(
        self, user_id: str, aggregates: list[UserFormulaAggregate], now: datetime
    ) -> bool:
        """
        Upsert one user's profile.

        Returns:
            False when no formula qualifies either way (profile left untouched)
        """
        successful, underperforming = classify_formulas(aggregates)
        if not successful and not underperforming:
            return False

        async with self.session_factory() as db:
            await upsert(
                db,
                PsychologicalProfile,
                {
                    "user_id": user_id,
                    "successful_formulas": successful,
                    "underperforming_formulas": underperforming,
                    "last_updated": now,
                    "updated_at": now,
                },
                conflict_columns=("user_id",),
                update_columns=(
                    "successful_formulas",
                    "underperforming_formulas",
                    "last_updated",
                    "updated_at",
                ),
            )
            await db.commit()

        logger.debug(
            f"Updated psychological profile for user {user_id}: "
            f"{len(successful)} successful, {len(underperforming)} underperforming",
            extra={"job": JOB_NAME, "user_id": user_id},
        )
        return True

    async def run(self, now: Optional[datetime] = None) -> JobRunSummary:
        now = ensure_utc(now or utcnow())
        summary = JobRunSummary(job_name=JOB_NAME, started_at=utcnow())

        by_user = await self.load_user_aggregates(now)
        logger.info(f"Updating psychological profiles for {len(by_user)} users")

        for user_id, aggregates in by_user.items():
            try:
                updated = await self.update_profile(user_id, aggregates, now)
            except Exception as e:
                logger.error(
                    f"Failed to update psychological profile for user {user_id}: {e}",
                    exc_info=True,
                    extra={"job": JOB_NAME, "user_id": user_id},
                )
                summary.record_failure(user_id, e)
                continue

            if updated:
                summary.record_success()
            else:
                summary.record_skip()

        return summary.finish()
