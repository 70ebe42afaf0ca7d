"""
Plan configuration for subscription tiers.

This module is the single source of truth for plan limits. It lives in
core/ so both service and API layers can import from it without creating
circular dependencies. The billing layer only ever writes a plan id onto
the user record; the limits behind that id are resolved here.
"""

from dataclasses import dataclass
from enum import Enum
from math import floor
from typing import Optional

from core.errors import ConfigurationError


class ResetCadence(str, Enum):
    """How often a plan's usage period rolls over."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Bounded overage on paid plans: up to 50% of the base primary limit
PAID_OVERAGE_FRACTION = 0.5

# Plan configuration. A limit of None means unlimited.
PLANS = {
    "free": {
        "name": "Free",
        "price_monthly": 0,
        "limits": {
            "primary": 0,  # no premium-model generations
            "secondary": 5,  # draft generations per week
        },
        "reset_cadence": ResetCadence.WEEKLY,
        "overage_fraction": 0.0,
    },
    "starter": {
        "name": "Starter",
        "price_monthly": 9,
        "limits": {
            "primary": 100,
            "secondary": None,
        },
        "reset_cadence": ResetCadence.MONTHLY,
        "overage_fraction": PAID_OVERAGE_FRACTION,
    },
    "creator": {
        "name": "Creator",
        "price_monthly": 15,
        "limits": {
            "primary": 200,
            "secondary": None,
        },
        "reset_cadence": ResetCadence.MONTHLY,
        "overage_fraction": PAID_OVERAGE_FRACTION,
    },
    "pro": {
        "name": "Pro",
        "price_monthly": 24,
        "limits": {
            "primary": 400,
            "secondary": None,
        },
        "reset_cadence": ResetCadence.MONTHLY,
        "overage_fraction": PAID_OVERAGE_FRACTION,
    },
    "teams": {
        "name": "Teams",
        "price_monthly": 59,
        "limits": {
            "primary": None,
            "secondary": None,
        },
        "reset_cadence": ResetCadence.MONTHLY,
        "overage_fraction": 0.0,
    },
}


@dataclass(frozen=True)
class PlanLimits:
    """Resolved limits for one plan."""

    plan_id: str
    primary_limit: Optional[int]
    secondary_limit: Optional[int]
    reset_cadence: ResetCadence
    overage_fraction: float = 0.0

    @property
    def max_overage(self) -> int:
        """Overage units allowed per period; 0 when unlimited or disabled."""
        if self.primary_limit is None or self.overage_fraction <= 0:
            return 0
        return floor(self.primary_limit * self.overage_fraction)

    @property
    def allows_overage(self) -> bool:
        return self.max_overage > 0


def plan_limits(plan_id: Optional[str]) -> PlanLimits:
    """
    Look up the limits for a plan id.

    Raises:
        ConfigurationError: If the plan id is unknown or its limits are incomplete.
    """
    if not plan_id:
        raise ConfigurationError("No plan id supplied")

    plan = PLANS.get(plan_id)
    if plan is None:
        raise ConfigurationError(f"Unknown plan id: {plan_id!r}")

    limits = plan.get("limits")
    if not limits or "primary" not in limits or "secondary" not in limits:
        raise ConfigurationError(f"Plan {plan_id!r} is missing quota limits")

    cadence = plan.get("reset_cadence")
    if cadence is None:
        raise ConfigurationError(f"Plan {plan_id!r} is missing a reset cadence")

    return PlanLimits(
        plan_id=plan_id,
        primary_limit=limits["primary"],
        secondary_limit=limits["secondary"],
        reset_cadence=ResetCadence(cadence),
        overage_fraction=float(plan.get("overage_fraction", 0.0)),
    )
