"""Quota usage domain entities."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class QuotaKind(str, Enum):
    """The two metered generation classes."""

    PRIMARY = "primary"  # premium-model generations
    SECONDARY = "secondary"  # draft-tier generations


class UsageLevel(str, Enum):
    """How close a quota kind is to its limit."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of a check-and-consume call.

    ``remaining`` is None when the kind is unlimited.
    """

    allowed: bool
    remaining: Optional[int]
    kind: QuotaKind

    @property
    def is_unlimited(self) -> bool:
        return self.remaining is None


@dataclass(frozen=True)
class OverageResult:
    """Outcome of an overage recording attempt."""

    allowed: bool
    overage_remaining: int
    charge_accrued_cents: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class KindUsage:
    """Usage of one quota kind within the current period."""

    kind: QuotaKind
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    percentage: float
    level: UsageLevel


@dataclass(frozen=True)
class UsageStatus:
    """Snapshot of a user's current period."""

    user_id: str
    plan_id: str
    period_start: datetime
    period_end: datetime
    primary: KindUsage
    secondary: KindUsage
    overage_used: int = 0
    max_overage: int = 0
    overage_charge_cents: int = 0
    reconciliation_required: bool = False
    warnings: list[str] = field(default_factory=list)
