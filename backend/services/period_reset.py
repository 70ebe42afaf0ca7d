"""
Period reset scheduler.

Eagerly rolls expired usage periods forward so reporting stays accurate for
idle users. The lazy path (``QuotaLedger.ensure_current_period`` at
consumption time) performs the same transition; both go through the same
conditional update, so the sweep is idempotent and safe to run from
several instances at once.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.jobs import JobRunSummary
from core.errors import InvariantViolation, TransientStoreError
from core.periods import ensure_utc, utcnow
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database import async_session_maker
from infrastructure.database.models.usage import UsageLedgerEntry
from services.quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)

JOB_NAME = "period_sweep"


def is_expired(entry: UsageLedgerEntry, now: datetime) -> bool:
    """Expired once ``now >= period_end``; Active otherwise."""
    return ensure_utc(entry.period_end) <= ensure_utc(now)


class PeriodResetScheduler:
    """Sweep expired usage periods, one committed transaction per user."""

    job_name = JOB_NAME

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def find_expired_user_ids(self, now: datetime) -> list[str]:
        """Users whose current, unflagged entry has expired at ``now``."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(UsageLedgerEntry.user_id)
                .where(
                    UsageLedgerEntry.is_current.is_(True),
                    UsageLedgerEntry.reconciliation_required.is_(False),
                    UsageLedgerEntry.period_end <= now,
                )
                .order_by(UsageLedgerEntry.period_end)
            )
            return list(result.scalars().all())

    async def roll_user(self, user_id: str, now: Optional[datetime] = None) -> bool:
        """
        Roll one user's expired period in its own transaction.

        Expiry is re-evaluated here, not taken from the sweep's initial
        scan, so a period already rolled by a request or another instance
        is left alone.

        Returns:
            True if this call rolled the period, False if there was nothing to do

        Raises:
            InvariantViolation: The entry holds impossible counters (the flag
                is committed before raising)
            TransientStoreError: The store was unavailable; safe to retry
        """
        now = ensure_utc(now or utcnow())

        async with self.session_factory() as db:
            ledger = QuotaLedger(db, self.settings)
            try:
                entry = await ledger.get_current_entry(user_id)
                if entry is None or not is_expired(entry, now):
                    return False

                expired_id = entry.id
                try:
                    current = await ledger.ensure_current_period(user_id, now=now)
                except InvariantViolation:
                    # Persist the reconciliation flag before reporting
                    await db.commit()
                    raise

                await db.commit()
            except DBAPIError as e:
                await db.rollback()
                raise TransientStoreError(f"Store unavailable rolling user {user_id}: {e}") from e

        return current.id != expired_id

    async def sweep_expired(self, now: Optional[datetime] = None) -> JobRunSummary:
        """
        Roll every expired period; a failing user never aborts the sweep.

        Failures are logged with the user id and recorded in the returned
        summary; the next scheduled run retries them.
        """
        now = ensure_utc(now or utcnow())
        summary = JobRunSummary(job_name=JOB_NAME, started_at=utcnow())

        user_ids = await self.find_expired_user_ids(now)
        if not user_ids:
            logger.debug("No expired usage periods to roll")
            return summary.finish()

        logger.info(f"Found {len(user_ids)} expired usage periods to roll")

        for user_id in user_ids:
            try:
                rolled = await self.roll_user(user_id, now)
            except Exception as e:
                logger.error(
                    f"Failed to roll usage period for user {user_id}: {e}",
                    exc_info=True,
                    extra={"job": JOB_NAME, "user_id": user_id},
                )
                summary.record_failure(user_id, e)
                continue

            if rolled:
                summary.record_success()
            else:
                summary.record_skip()

        return summary.finish()
