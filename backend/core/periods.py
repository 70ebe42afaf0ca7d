"""
Billing period arithmetic.

Paid plans roll on calendar months, not fixed 30-day offsets, so that a
subscription started on the 31st keeps renewing on the 31st whenever the
month has one.
"""

import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional

from core.plans import ResetCadence

WEEKLY_PERIOD = timedelta(days=7)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on the way back)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(dt: datetime, months: int, anchor_day: Optional[int] = None) -> datetime:
    """
    Add calendar months to *dt*.

    The day of month is *anchor_day* (defaults to ``dt.day``), clamped to
    the length of the target month: Jan 31 + 1 month is Feb 28/29, and with
    ``anchor_day=31`` Feb 28 + 1 month is Mar 31 again.
    """
    day = anchor_day or dt.day
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(day, last_day))


def next_period_end(
    period_start: datetime,
    cadence: ResetCadence,
    anchor_day: Optional[int] = None,
) -> datetime:
    """Return the end of the period that starts at *period_start*."""
    if cadence == ResetCadence.WEEKLY:
        return period_start + WEEKLY_PERIOD
    return add_months(period_start, 1, anchor_day)


def advance_period(
    period_start: datetime,
    cadence: ResetCadence,
    now: datetime,
    anchor_day: Optional[int] = None,
) -> tuple[datetime, datetime]:
    """
    Step whole periods forward from *period_start* until one contains *now*.

    Returns ``(start, end)`` with ``start <= now < end``. A user idle for
    several periods lands on the period containing *now* while keeping the
    original billing anniversary.
    """
    start = period_start
    end = next_period_end(start, cadence, anchor_day)
    while end <= now:
        start = end
        end = next_period_end(start, cadence, anchor_day)
    return start, end
