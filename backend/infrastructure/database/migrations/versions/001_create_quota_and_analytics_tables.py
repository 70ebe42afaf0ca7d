"""Create quota ledger, analytics and job run tables

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Plan assignments (written by the billing layer)
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("subscription_plan", sa.String(length=50), nullable=False, server_default="free"),
        sa.Column(
            "subscription_status", sa.String(length=50), nullable=False, server_default="active"
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # Usage ledger
    op.create_table(
        "usage_ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("billing_anchor_day", sa.Integer(), nullable=False),
        sa.Column("primary_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("secondary_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("primary_limit", sa.Integer(), nullable=True),
        sa.Column("secondary_limit", sa.Integer(), nullable=True),
        sa.Column("plan_id", sa.String(length=50), nullable=False),
        sa.Column("overage_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_overage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("overage_charge_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "reconciliation_required", sa.Boolean(), nullable=False, server_default="false"
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_usage_ledger_entries_user_id", "usage_ledger_entries", ["user_id"])
    # At most one current entry per user
    op.create_index(
        "uq_usage_ledger_current_user",
        "usage_ledger_entries",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_current"),
    )
    op.create_index(
        "ix_usage_ledger_current_period_end",
        "usage_ledger_entries",
        ["is_current", "period_end"],
    )

    # Durable rate counters
    op.create_table(
        "rate_counters",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hits", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key", "window_start", name="uq_rate_counter_key_window"),
    )
    op.create_index("ix_rate_counters_expires_at", "rate_counters", ["expires_at"])

    # Hook formulas
    op.create_table(
        "hook_formulas",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("effectiveness_rating", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("avg_engagement_rate", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_hook_formulas_code", "hook_formulas", ["code"], unique=True)
    op.create_index("ix_hook_formulas_is_active", "hook_formulas", ["is_active"])

    # Performance records (append-only)
    op.create_table(
        "performance_records",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("formula_code", sa.String(length=50), nullable=False),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("was_used", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("was_favorited", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column(
            "recorded_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_performance_records_user_id", "performance_records", ["user_id"])
    op.create_index("ix_performance_records_formula_code", "performance_records", ["formula_code"])
    op.create_index("ix_performance_records_platform", "performance_records", ["platform"])
    op.create_index(
        "ix_performance_records_formula_recorded",
        "performance_records",
        ["formula_code", "recorded_at"],
    )
    op.create_index(
        "ix_performance_records_user_recorded",
        "performance_records",
        ["user_id", "recorded_at"],
    )

    # Trend tracking
    op.create_table(
        "hook_trends",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("formula_code", sa.String(length=50), nullable=False),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("weekly_usage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_usage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_performance_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("trend_direction", sa.String(length=20), nullable=False, server_default="stable"),
        sa.Column("fatigue_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_calculated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("data_points", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("formula_code", "platform", name="uq_hook_trend_formula_platform"),
    )
    op.create_index(
        "ix_hook_trends_platform_fatigue", "hook_trends", ["platform", "fatigue_level"]
    )

    # Psychological profiles
    op.create_table(
        "psychological_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("successful_formulas", sa.JSON(), nullable=False),
        sa.Column("underperforming_formulas", sa.JSON(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    # Job run summaries
    op.create_table(
        "job_runs",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("succeeded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failures", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_runs_name_started", "job_runs", ["job_name", "started_at"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_name_started", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_table("psychological_profiles")
    op.drop_index("ix_hook_trends_platform_fatigue", table_name="hook_trends")
    op.drop_table("hook_trends")
    op.drop_index("ix_performance_records_user_recorded", table_name="performance_records")
    op.drop_index("ix_performance_records_formula_recorded", table_name="performance_records")
    op.drop_index("ix_performance_records_platform", table_name="performance_records")
    op.drop_index("ix_performance_records_formula_code", table_name="performance_records")
    op.drop_index("ix_performance_records_user_id", table_name="performance_records")
    op.drop_table("performance_records")
    op.drop_index("ix_hook_formulas_is_active", table_name="hook_formulas")
    op.drop_index("ix_hook_formulas_code", table_name="hook_formulas")
    op.drop_table("hook_formulas")
    op.drop_index("ix_rate_counters_expires_at", table_name="rate_counters")
    op.drop_table("rate_counters")
    op.drop_index("ix_usage_ledger_current_period_end", table_name="usage_ledger_entries")
    op.drop_index("uq_usage_ledger_current_user", table_name="usage_ledger_entries")
    op.drop_index("ix_usage_ledger_entries_user_id", table_name="usage_ledger_entries")
    op.drop_table("usage_ledger_entries")
    op.drop_table("users")
