"""
Scheduled job run database model.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class JobRun(Base, TimestampMixin):
    """Persisted summary of one scheduled job run."""

    __tablename__ = "job_runs"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    """Values: 'period_sweep', 'trend_recomputation', 'effectiveness_recalculation', ..."""

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    succeeded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    failures: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    """
    Structure:
    [
        {"entity_key": "user-123", "error": "..."},
    ]
    """

    __table_args__ = (Index("ix_job_runs_name_started", "job_name", "started_at"),)

    def __repr__(self) -> str:
        return (
            f"<JobRun(job_name={self.job_name}, processed={self.processed}, "
            f"failed={self.failed}, started_at={self.started_at})>"
        )
