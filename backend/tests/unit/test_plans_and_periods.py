"""
Unit tests for plan limits and billing period arithmetic.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import ConfigurationError
from core.periods import add_months, advance_period, ensure_utc, next_period_end
from core.plans import PLANS, ResetCadence, plan_limits


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ============================================================================
# Plan limits
# ============================================================================


class TestPlanLimits:
    def test_free_plan_has_no_primary_and_weekly_drafts(self):
        limits = plan_limits("free")
        assert limits.primary_limit == 0
        assert limits.secondary_limit == 5
        assert limits.reset_cadence == ResetCadence.WEEKLY
        assert limits.max_overage == 0
        assert not limits.allows_overage

    @pytest.mark.parametrize(
        "plan, primary, max_overage",
        [("starter", 100, 50), ("creator", 200, 100), ("pro", 400, 200)],
    )
    def test_paid_plans_allow_half_overage(self, plan, primary, max_overage):
        limits = plan_limits(plan)
        assert limits.primary_limit == primary
        assert limits.secondary_limit is None
        assert limits.reset_cadence == ResetCadence.MONTHLY
        assert limits.max_overage == max_overage

    def test_teams_plan_is_unlimited_without_overage(self):
        limits = plan_limits("teams")
        assert limits.primary_limit is None
        assert limits.secondary_limit is None
        assert limits.max_overage == 0

    def test_unknown_plan_raises_instead_of_defaulting(self):
        with pytest.raises(ConfigurationError, match="Unknown plan"):
            plan_limits("platinum")

    def test_missing_plan_id_raises(self):
        with pytest.raises(ConfigurationError):
            plan_limits(None)

    def test_plan_without_limits_raises(self, monkeypatch):
        monkeypatch.setitem(PLANS, "broken", {"name": "Broken", "reset_cadence": "monthly"})
        with pytest.raises(ConfigurationError, match="missing quota limits"):
            plan_limits("broken")


# ============================================================================
# Period arithmetic
# ============================================================================


class TestAddMonths:
    def test_simple_month(self):
        assert add_months(utc(2026, 3, 15, 9), 1) == utc(2026, 4, 15, 9)

    def test_clamps_to_short_month(self):
        assert add_months(utc(2026, 1, 31), 1) == utc(2026, 2, 28)

    def test_leap_year_february(self):
        assert add_months(utc(2028, 1, 31), 1) == utc(2028, 2, 29)

    def test_anchor_day_restored_after_short_month(self):
        feb = add_months(utc(2026, 1, 31), 1, anchor_day=31)
        assert add_months(feb, 1, anchor_day=31) == utc(2026, 3, 31)

    def test_year_rollover(self):
        assert add_months(utc(2026, 12, 10), 1) == utc(2027, 1, 10)


class TestNextPeriodEnd:
    def test_weekly_is_seven_days(self):
        start = utc(2026, 3, 1)
        assert next_period_end(start, ResetCadence.WEEKLY) == start + timedelta(days=7)

    def test_monthly_uses_calendar_months(self):
        assert next_period_end(utc(2026, 2, 1), ResetCadence.MONTHLY) == utc(2026, 3, 1)
        assert next_period_end(utc(2026, 3, 1), ResetCadence.MONTHLY) == utc(2026, 4, 1)


class TestAdvancePeriod:
    def test_single_step(self):
        start, end = advance_period(
            utc(2026, 3, 8), ResetCadence.WEEKLY, now=utc(2026, 3, 10)
        )
        assert (start, end) == (utc(2026, 3, 8), utc(2026, 3, 15))

    def test_skips_idle_periods_and_keeps_anniversary(self):
        start, end = advance_period(
            utc(2026, 1, 31), ResetCadence.MONTHLY, now=utc(2026, 5, 2), anchor_day=31
        )
        assert start == utc(2026, 4, 30)
        assert end == utc(2026, 5, 31)

    def test_boundary_now_equal_to_end_moves_on(self):
        start, end = advance_period(
            utc(2026, 3, 1), ResetCadence.WEEKLY, now=utc(2026, 3, 8)
        )
        assert start == utc(2026, 3, 8)
        assert end == utc(2026, 3, 15)


def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2026, 3, 1, 12, 0)
    assert ensure_utc(naive) == utc(2026, 3, 1, 12, 0)
