"""Content performance domain entities."""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Platform key for trend rows aggregated across every platform
ALL_PLATFORMS = "all"


class TrendDirection(str, Enum):
    """Usage velocity of a formula relative to its monthly average."""

    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


@dataclass(frozen=True)
class FormulaAggregate:
    """Rolling statistics for one formula (optionally one platform) over a window."""

    formula_code: str
    window_days: int
    count: int = 0
    rated_count: int = 0
    avg_rating: float = 0.0
    favorite_rate: float = 0.0
    usage_rate: float = 0.0
    platform: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    @classmethod
    def empty(
        cls, formula_code: str, window_days: int, platform: Optional[str] = None
    ) -> "FormulaAggregate":
        return cls(formula_code=formula_code, window_days=window_days, platform=platform)


@dataclass(frozen=True)
class UserFormulaAggregate:
    """Rolling statistics for one user's use of one formula."""

    user_id: str
    formula_code: str
    count: int
    avg_rating: float
    favorite_rate: float


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (``round()`` rounds half to even)."""
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
