"""
User subscription record.

The billing layer is the only writer of ``subscription_plan``; this service
reads it when a usage period is created or rolled.
"""

from enum import Enum

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class SubscriptionStatus(str, Enum):
    """Subscription status enumeration."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class User(Base, TimestampMixin):
    """Plan assignment for an externally authenticated user."""

    __tablename__ = "users"

    # Identity comes from the external auth provider
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    subscription_plan: Mapped[str] = mapped_column(
        String(50),
        default="free",
        nullable=False,
    )
    subscription_status: Mapped[str] = mapped_column(
        String(50),
        default=SubscriptionStatus.ACTIVE.value,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, plan={self.subscription_plan}, status={self.subscription_status})>"
