"""
SQLAlchemy database models.
"""

from .analytics import FormulaRecord, PerformanceRecord, PsychologicalProfile, TrendRecord
from .base import Base, TimestampMixin
from .jobs import JobRun
from .usage import RateCounter, UsageLedgerEntry
from .user import SubscriptionStatus, User

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "SubscriptionStatus",
    "UsageLedgerEntry",
    "RateCounter",
    "FormulaRecord",
    "PerformanceRecord",
    "TrendRecord",
    "PsychologicalProfile",
    "JobRun",
]
