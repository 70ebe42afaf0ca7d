# Domain Entities
# Pure business objects with no external dependencies
from .analytics import (
    ALL_PLATFORMS,
    FormulaAggregate,
    TrendDirection,
    UserFormulaAggregate,
    clamp,
    round_half_up,
)
from .jobs import JobFailure, JobRunSummary
from .usage import ConsumeResult, KindUsage, OverageResult, QuotaKind, UsageLevel, UsageStatus

__all__ = [
    "ALL_PLATFORMS",
    "FormulaAggregate",
    "UserFormulaAggregate",
    "TrendDirection",
    "round_half_up",
    "clamp",
    "JobFailure",
    "JobRunSummary",
    "QuotaKind",
    "UsageLevel",
    "ConsumeResult",
    "OverageResult",
    "KindUsage",
    "UsageStatus",
]
