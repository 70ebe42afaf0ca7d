"""
Append-only writer for hook performance feedback.

The generation and feedback flows call this after a hook is shown, rated,
used or favorited. Records are never updated in place.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.periods import ensure_utc, utcnow
from infrastructure.database.models.analytics import PerformanceRecord

logger = logging.getLogger(__name__)

MIN_RATING = 0
MAX_RATING = 5


class PerformanceLog:
    """Record performance events for the aggregation jobs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        user_id: str,
        formula_code: str,
        platform: str,
        rating: Optional[int] = None,
        was_used: bool = False,
        was_favorited: bool = False,
        recorded_at: Optional[datetime] = None,
    ) -> PerformanceRecord:
        """
        Append one performance record.

        Args:
            user_id: User who received the hook
            formula_code: Formula that produced the hook
            platform: Target platform (e.g. 'tiktok', 'instagram')
            rating: Optional 0-5 user rating
            was_used: Whether the user used the hook
            was_favorited: Whether the user favorited the hook
            recorded_at: Event time (defaults to now)

        Returns:
            The flushed PerformanceRecord

        Raises:
            ValueError: If the rating is outside 0-5 or a key is blank
        """
        if rating is not None and not MIN_RATING <= rating <= MAX_RATING:
            raise ValueError(f"rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")
        if not formula_code or not platform:
            raise ValueError("formula_code and platform are required")

        record = PerformanceRecord(
            user_id=user_id,
            formula_code=formula_code,
            platform=platform.lower(),
            rating=rating,
            was_used=was_used,
            was_favorited=was_favorited,
            recorded_at=ensure_utc(recorded_at or utcnow()),
        )
        self.db.add(record)
        await self.db.flush()

        logger.debug(
            f"Recorded performance for formula {formula_code} on {record.platform}",
            extra={"user_id": user_id, "formula_code": formula_code, "platform": record.platform},
        )
        return record
