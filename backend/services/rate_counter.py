"""
Durable fixed-window rate counters.

Counters live in the shared database next to the usage ledger instead of
process memory, so every application instance sees the same count.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from core.periods import ensure_utc, utcnow
from infrastructure.database.models.usage import RateCounter
from infrastructure.database.upsert import dialect_insert

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class RateDecision:
    """Outcome of one counted hit."""

    allowed: bool
    hits: int
    limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.hits)


def window_start_for(now: datetime, window_seconds: int) -> datetime:
    """Align ``now`` down to the start of its fixed window."""
    elapsed = int((ensure_utc(now) - _EPOCH).total_seconds())
    return _EPOCH + timedelta(seconds=elapsed - elapsed % window_seconds)


class DurableRateCounter:
    """Count hits per key in fixed windows with one atomic upsert per hit."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def hit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        now: Optional[datetime] = None,
    ) -> RateDecision:
        """
        Count one hit for ``key`` and report whether it is within ``limit``.

        Args:
            key: Counter key, e.g. 'login:203.0.113.7'
            limit: Hits allowed per window
            window_seconds: Window length
            now: Hit time (defaults to now)

        Returns:
            RateDecision; ``allowed`` is False once the window's count exceeds ``limit``
        """
        if window_seconds < 1:
            raise ValueError(f"window_seconds must be >= 1, got {window_seconds}")

        now = ensure_utc(now or utcnow())
        window_start = window_start_for(now, window_seconds)
        reset_at = window_start + timedelta(seconds=window_seconds)

        stmt = dialect_insert(self.db, RateCounter).values(
            key=key,
            window_start=window_start,
            expires_at=reset_at,
            hits=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key", "window_start"],
            set_={"hits": RateCounter.hits + 1, "updated_at": now},
        ).returning(RateCounter.hits)

        result = await self.db.execute(stmt)
        hits = result.scalar_one()
        allowed = hits <= limit

        if not allowed:
            logger.warning(f"Rate limit exceeded for {key}: {hits}/{limit} in {window_seconds}s window")

        return RateDecision(allowed=allowed, hits=hits, limit=limit, reset_at=reset_at)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete windows that ended at or before ``now``. Returns rows deleted."""
        now = ensure_utc(now or utcnow())
        result = await self.db.execute(delete(RateCounter).where(RateCounter.expires_at <= now))
        purged = result.rowcount or 0
        if purged:
            logger.info(f"Purged {purged} expired rate counter windows")
        return purged
