"""
Service layer for business logic.
"""

from services.effectiveness import EffectivenessRecalculator
from services.job_scheduler import (
    JobScheduler,
    run_analytics_pipeline,
    run_period_sweep,
    run_rate_counter_cleanup,
)
from services.performance_aggregator import PerformanceAggregator
from services.performance_log import PerformanceLog
from services.period_reset import PeriodResetScheduler
from services.psychological_profiles import PsychologicalProfileJob
from services.quota_ledger import QuotaLedger
from services.rate_counter import DurableRateCounter, RateDecision
from services.trend_recomputation import TrendRecomputationJob

__all__ = [
    "QuotaLedger",
    "PeriodResetScheduler",
    "PerformanceAggregator",
    "PerformanceLog",
    "TrendRecomputationJob",
    "EffectivenessRecalculator",
    "PsychologicalProfileJob",
    "DurableRateCounter",
    "RateDecision",
    "JobScheduler",
    "run_period_sweep",
    "run_analytics_pipeline",
    "run_rate_counter_cleanup",
]
