"""
Scheduled job orchestration.

Each job is a plain coroutine that can be invoked on its own (cron, a
workflow engine, the ops API, a test). ``JobScheduler`` is only a simple
timer loop around them for single-process deployments; the jobs themselves
carry their own idempotency and never assume how they were triggered.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.jobs import JobRunSummary
from core.periods import ensure_utc, utcnow
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database import async_session_maker
from services.effectiveness import EffectivenessRecalculator
from services.job_runs import JobRunRepository, log_summary
from services.period_reset import PeriodResetScheduler
from services.psychological_profiles import PsychologicalProfileJob
from services.rate_counter import DurableRateCounter
from services.trend_recomputation import TrendRecomputationJob

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]

RATE_COUNTER_CLEANUP_JOB = "rate_counter_cleanup"


async def record_run(summary: JobRunSummary, session_factory: SessionFactory) -> JobRunSummary:
    """Log the summary and persist it to ``job_runs``."""
    log_summary(summary)
    try:
        async with session_factory() as db:
            await JobRunRepository(db).save(summary)
            await db.commit()
    except Exception as e:
        logger.error(
            f"Failed to persist run summary for {summary.job_name}: {e}",
            exc_info=True,
            extra={"job": summary.job_name},
        )
    return summary


async def run_period_sweep(
    session_factory: SessionFactory = async_session_maker,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> JobRunSummary:
    """Roll every expired usage period forward."""
    scheduler = PeriodResetScheduler(session_factory, settings)
    summary = await scheduler.sweep_expired(now)
    return await record_run(summary, session_factory)


async def run_analytics_pipeline(
    session_factory: SessionFactory = async_session_maker,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> list[JobRunSummary]:
    """
    Trend recomputation, then effectiveness, then psychological profiles.

    Each stage reads only committed state from the previous one. A stage
    that crashes outright is recorded as a failed run and the next stage
    still runs.
    """
    now = ensure_utc(now or utcnow())
    stages = [
        TrendRecomputationJob(session_factory, settings),
        EffectivenessRecalculator(session_factory, settings),
        PsychologicalProfileJob(session_factory, settings),
    ]

    summaries = []
    for stage in stages:
        try:
            summary = await stage.run(now)
        except Exception as e:
            job_name = stage.job_name
            logger.error(f"Analytics stage {job_name} crashed: {e}", exc_info=True)
            summary = JobRunSummary(job_name=job_name, started_at=now)
            summary.record_failure("*", e)
            summary.finish()
        summaries.append(await record_run(summary, session_factory))
    return summaries


async def run_rate_counter_cleanup(
    session_factory: SessionFactory = async_session_maker,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> JobRunSummary:
    """Delete expired rate counter windows; a crash is recorded as a failed run."""
    summary = JobRunSummary(job_name=RATE_COUNTER_CLEANUP_JOB, started_at=utcnow())
    try:
        async with session_factory() as db:
            purged = await DurableRateCounter(db).purge_expired(now)
            await db.commit()
    except Exception as e:
        logger.error(f"Rate counter cleanup crashed: {e}", exc_info=True)
        summary.record_failure("*", e)
    else:
        summary.processed = summary.succeeded = purged
    return await record_run(summary.finish(), session_factory)


class JobScheduler:
    """Timer loop that runs each job when its interval has elapsed."""

    def __init__(
        self,
        session_factory: SessionFactory = async_session_maker,
        settings: Optional[Settings] = None,
        check_interval: int = 60,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.check_interval = check_interval
        self.is_running = False
        self._last_run: dict[str, float] = {}

        # Ordered: the sweep runs before analytics within the same tick
        self.jobs: list[tuple[str, int, Callable[[], Awaitable[object]]]] = [
            (
                "period_sweep",
                self.settings.period_sweep_interval_seconds,
                lambda: run_period_sweep(self.session_factory, self.settings),
            ),
            (
                "analytics_pipeline",
                self.settings.analytics_interval_seconds,
                lambda: run_analytics_pipeline(self.session_factory, self.settings),
            ),
            (
                "rate_counter_cleanup",
                self.settings.rate_counter_cleanup_interval_seconds,
                lambda: run_rate_counter_cleanup(self.session_factory, self.settings),
            ),
        ]

    def is_due(self, name: str, interval: int, now: float) -> bool:
        last = self._last_run.get(name)
        return last is None or now - last >= interval

    async def run_due_jobs(self) -> list[str]:
        """Run every due job once; a crashing job never stops the others."""
        ran = []
        for name, interval, job in self.jobs:
            now = time.monotonic()
            if not self.is_due(name, interval, now):
                continue

            self._last_run[name] = now
            try:
                await job()
            except Exception as e:
                logger.error(f"Scheduled job {name} failed: {e}", exc_info=True, extra={"job": name})
            ran.append(name)
        return ran

    async def start(self):
        """Start the scheduler background loop."""
        if self.is_running:
            logger.warning("Job scheduler is already running")
            return

        self.is_running = True
        logger.info("Job scheduler started - checking for due jobs every %d seconds", self.check_interval)

        while self.is_running:
            try:
                await self.run_due_jobs()
            except Exception as e:
                logger.error(f"Job scheduler error: {e}", exc_info=True)

            await asyncio.sleep(self.check_interval)

    async def stop(self):
        """Stop the scheduler."""
        if not self.is_running:
            return

        self.is_running = False
        logger.info("Job scheduler stopped")
