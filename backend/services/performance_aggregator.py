"""
Performance aggregation over the append-only performance record stream.

Pure read-and-reduce: nothing here writes. The reduction runs in SQL
(``COUNT``/``AVG``) so a window of any size costs one grouped query.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.analytics import FormulaAggregate, UserFormulaAggregate
from core.periods import ensure_utc, utcnow
from infrastructure.database.models.analytics import PerformanceRecord

logger = logging.getLogger(__name__)

AggregateKey = Union[str, tuple[str, str]]


def _rate(column):
    """Fraction of rows where a boolean column is true."""
    return func.avg(case((column.is_(True), 1.0), else_=0.0))


def _float(value) -> float:
    # AVG comes back as Decimal on PostgreSQL and float on SQLite; NULL when no rows qualify
    return float(value) if value is not None else 0.0


class PerformanceAggregator:
    """Reduce performance records into per-formula rolling statistics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def window_bounds(window_days: int, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
        """Return ``(since, until)`` for a trailing window ending at ``now``."""
        if window_days < 1:
            raise ValueError(f"window_days must be >= 1, got {window_days}")
        until = ensure_utc(now or utcnow())
        return until - timedelta(days=window_days), until

    async def aggregate(
        self,
        window_days: int,
        now: Optional[datetime] = None,
        by_platform: bool = False,
        formula_codes: Optional[Iterable[str]] = None,
    ) -> dict[AggregateKey, FormulaAggregate]:
        """
        Aggregate every formula (or every formula x platform) in the window.

        Args:
            window_days: Trailing window length in days
            now: End of the window (defaults to now)
            by_platform: Key results by ``(formula_code, platform)`` instead
                of ``formula_code``
            formula_codes: Restrict to these formulas. Without ``by_platform``,
                formulas with no records get an empty aggregate.

        Returns:
            Dict keyed by formula code or ``(formula_code, platform)``
        """
        since, until = self.window_bounds(window_days, now)
        codes = list(formula_codes) if formula_codes is not None else None

        group_columns = [PerformanceRecord.formula_code]
        if by_platform:
            group_columns.append(PerformanceRecord.platform)

        stmt = (
            select(
                *group_columns,
                func.count(PerformanceRecord.id),
                func.count(PerformanceRecord.rating),
                func.avg(PerformanceRecord.rating),
                _rate(PerformanceRecord.was_favorited),
                _rate(PerformanceRecord.was_used),
            )
            .where(
                PerformanceRecord.recorded_at > since,
                PerformanceRecord.recorded_at <= until,
            )
            .group_by(*group_columns)
        )
        if codes is not None:
            if not codes:
                return {}
            stmt = stmt.where(PerformanceRecord.formula_code.in_(codes))

        result = await self.db.execute(stmt)

        aggregates: dict[AggregateKey, FormulaAggregate] = {}
        for row in result.all():
            if by_platform:
                formula_code, platform, count, rated, avg_rating, favorite_rate, usage_rate = row
                key: AggregateKey = (formula_code, platform)
            else:
                formula_code, count, rated, avg_rating, favorite_rate, usage_rate = row
                platform = None
                key = formula_code

            aggregates[key] = FormulaAggregate(
                formula_code=formula_code,
                window_days=window_days,
                count=int(count),
                rated_count=int(rated),
                avg_rating=_float(avg_rating),
                favorite_rate=_float(favorite_rate),
                usage_rate=_float(usage_rate),
                platform=platform,
            )

        if codes is not None and not by_platform:
            for code in codes:
                aggregates.setdefault(code, FormulaAggregate.empty(code, window_days))

        return aggregates

    async def for_formula(
        self,
        formula_code: str,
        window_days: int,
        now: Optional[datetime] = None,
        platform: Optional[str] = None,
    ) -> FormulaAggregate:
        """
        Aggregate one formula, optionally restricted to one platform.

        Returns an empty aggregate when there are no records, so newly added
        formulas flow through downstream jobs unchanged.
        """
        since, until = self.window_bounds(window_days, now)

        stmt = select(
            func.count(PerformanceRecord.id),
            func.count(PerformanceRecord.rating),
            func.avg(PerformanceRecord.rating),
            _rate(PerformanceRecord.was_favorited),
            _rate(PerformanceRecord.was_used),
        ).where(
            PerformanceRecord.formula_code == formula_code,
            PerformanceRecord.recorded_at > since,
            PerformanceRecord.recorded_at <= until,
        )
        if platform is not None:
            stmt = stmt.where(PerformanceRecord.platform == platform)

        count, rated, avg_rating, favorite_rate, usage_rate = (await self.db.execute(stmt)).one()
        if not count:
            return FormulaAggregate.empty(formula_code, window_days, platform)

        return FormulaAggregate(
            formula_code=formula_code,
            window_days=window_days,
            count=int(count),
            rated_count=int(rated),
            avg_rating=_float(avg_rating),
            favorite_rate=_float(favorite_rate),
            usage_rate=_float(usage_rate),
            platform=platform,
        )

    async def platforms_for(
        self, formula_code: str, window_days: int, now: Optional[datetime] = None
    ) -> list[str]:
        """Platforms with at least one record for the formula in the window."""
        since, until = self.window_bounds(window_days, now)
        result = await self.db.execute(
            select(PerformanceRecord.platform)
            .where(
                PerformanceRecord.formula_code == formula_code,
                PerformanceRecord.recorded_at > since,
                PerformanceRecord.recorded_at <= until,
            )
            .distinct()
            .order_by(PerformanceRecord.platform)
        )
        return list(result.scalars().all())

    async def by_user(
        self,
        window_days: int,
        min_records: int = 1,
        now: Optional[datetime] = None,
    ) -> list[UserFormulaAggregate]:
        """
        Aggregate per ``(user_id, formula_code)``, keeping pairs with at
        least ``min_records`` records. Ordered by user then formula.
        """
        since, until = self.window_bounds(window_days, now)
        record_count = func.count(PerformanceRecord.id)

        result = await self.db.execute(
            select(
                PerformanceRecord.user_id,
                PerformanceRecord.formula_code,
                record_count,
                func.avg(PerformanceRecord.rating),
                _rate(PerformanceRecord.was_favorited),
            )
            .where(
                PerformanceRecord.recorded_at > since,
                PerformanceRecord.recorded_at <= until,
            )
            .group_by(PerformanceRecord.user_id, PerformanceRecord.formula_code)
            .having(record_count >= min_records)
            .order_by(PerformanceRecord.user_id, PerformanceRecord.formula_code)
        )

        return [
            UserFormulaAggregate(
                user_id=user_id,
                formula_code=formula_code,
                count=int(count),
                avg_rating=_float(avg_rating),
                favorite_rate=_float(favorite_rate),
            )
            for user_id, formula_code, count, avg_rating, favorite_rate in result.all()
        ]
