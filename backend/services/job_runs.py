"""
Job run summaries: structured logging and persistence.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.jobs import JobRunSummary
from infrastructure.database.models.jobs import JobRun

logger = logging.getLogger(__name__)

MAX_LISTED_RUNS = 100


def log_summary(summary: JobRunSummary) -> None:
    """Emit one structured record per run; failed runs log at ERROR."""
    extra = {
        "job": summary.job_name,
        "processed": summary.processed,
        "succeeded": summary.succeeded,
        "skipped": summary.skipped,
        "failed": summary.failed,
        "failures": [f.entity_key for f in summary.failures],
        "duration_ms": summary.duration_ms,
    }
    message = (
        f"Job {summary.job_name} finished: {summary.processed} processed, "
        f"{summary.succeeded} succeeded, {summary.skipped} skipped, {summary.failed} failed"
    )
    if summary.ok:
        logger.info(message, extra=extra)
    else:
        logger.error(message, extra=extra)


class JobRunRepository:
    """Store and list job run summaries for external alerting."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, summary: JobRunSummary) -> JobRun:
        run = JobRun(
            job_name=summary.job_name,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            processed=summary.processed,
            succeeded=summary.succeeded,
            skipped=summary.skipped,
            failed=summary.failed,
            failures=[{"entity_key": f.entity_key, "error": f.error} for f in summary.failures],
        )
        self.db.add(run)
        await self.db.flush()
        return run

    async def list_recent(self, job_name: Optional[str] = None, limit: int = 20) -> list[JobRun]:
        """Latest runs first, optionally for one job."""
        stmt = select(JobRun).order_by(JobRun.started_at.desc()).limit(min(limit, MAX_LISTED_RUNS))
        if job_name:
            stmt = stmt.where(JobRun.job_name == job_name)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
