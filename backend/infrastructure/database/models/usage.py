"""
Usage ledger and durable counter database models.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class UsageLedgerEntry(Base, TimestampMixin):
    """One billing period of quota consumption for one user.

    Exactly one entry per user is current at a time (partial unique index on
    ``user_id WHERE is_current``). Rolling a period supersedes the old entry
    instead of deleting it.
    """

    __tablename__ = "usage_ledger_entries"

    # Primary key
    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Identity comes from the external auth provider
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Period bounds
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    billing_anchor_day: Mapped[int] = mapped_column(Integer, nullable=False)
    """Day of month of the first period start; keeps monthly anniversaries stable."""

    # Counters
    primary_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    secondary_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Limits copied from the plan at period creation. NULL means unlimited.
    primary_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    secondary_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # Bounded overage on the primary kind
    overage_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_overage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    overage_charge_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Reset tracking
    last_reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Lifecycle
    is_current: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reconciliation_required: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    """Set when an invariant violation is observed; blocks automatic mutation."""

    __table_args__ = (
        Index(
            "uq_usage_ledger_current_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        Index("ix_usage_ledger_current_period_end", "is_current", "period_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageLedgerEntry(id={self.id}, user_id={self.user_id}, plan_id={self.plan_id}, "
            f"primary={self.primary_used}/{self.primary_limit}, "
            f"secondary={self.secondary_used}/{self.secondary_limit}, "
            f"is_current={self.is_current})>"
        )


class RateCounter(Base, TimestampMixin):
    """Fixed-window hit counter shared by every application instance."""

    __tablename__ = "rate_counters"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    hits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("key", "window_start", name="uq_rate_counter_key_window"),
    )

    def __repr__(self) -> str:
        return f"<RateCounter(key={self.key}, window_start={self.window_start}, hits={self.hits})>"
