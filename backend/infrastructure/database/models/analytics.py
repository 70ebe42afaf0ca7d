"""
Hook formula performance and trend database models.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, _utcnow


class FormulaRecord(Base, TimestampMixin):
    """A hook formula and its long-run effectiveness rating."""

    __tablename__ = "hook_formulas"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    """E.g. 'QH-01', 'ST-02'"""

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    effectiveness_rating: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    """0-100"""

    avg_engagement_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """0-100"""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<FormulaRecord(code={self.code}, effectiveness_rating={self.effectiveness_rating}, "
            f"is_active={self.is_active})>"
        )


class PerformanceRecord(Base):
    """Append-only feedback event for one generated hook."""

    __tablename__ = "performance_records"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    formula_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """User rating 0-5; NULL when the user never rated the hook."""

    was_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    was_favorited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_performance_records_formula_recorded", "formula_code", "recorded_at"),
        Index("ix_performance_records_user_recorded", "user_id", "recorded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PerformanceRecord(formula_code={self.formula_code}, platform={self.platform}, "
            f"rating={self.rating}, recorded_at={self.recorded_at})>"
        )


class TrendRecord(Base, TimestampMixin):
    """Usage velocity and fatigue of a formula on a platform."""

    __tablename__ = "hook_trends"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    formula_code: Mapped[str] = mapped_column(String(50), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    """Platform name, or 'all' for the cross-platform row."""

    weekly_usage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_usage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_performance_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """0-100"""

    trend_direction: Mapped[str] = mapped_column(String(20), default="stable", nullable=False)
    """Values: 'rising', 'stable', 'falling'"""

    fatigue_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """0-100"""

    last_calculated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    data_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("formula_code", "platform", name="uq_hook_trend_formula_platform"),
        Index("ix_hook_trends_platform_fatigue", "platform", "fatigue_level"),
    )

    def __repr__(self) -> str:
        return (
            f"<TrendRecord(formula_code={self.formula_code}, platform={self.platform}, "
            f"trend_direction={self.trend_direction}, fatigue_level={self.fatigue_level})>"
        )


class PsychologicalProfile(Base, TimestampMixin):
    """Per-user formula preferences derived from performance history."""

    __tablename__ = "psychological_profiles"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    successful_formulas: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    """Formula codes the user rates or favorites highly."""

    underperforming_formulas: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PsychologicalProfile(user_id={self.user_id}, "
            f"successful={len(self.successful_formulas or [])}, "
            f"underperforming={len(self.underperforming_formulas or [])})>"
        )
