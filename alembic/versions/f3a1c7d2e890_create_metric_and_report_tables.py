"""create_metric_and_report_tables

Revision ID: f3a1c7d2e890
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "f3a1c7d2e890"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

METRIC_NAMES = (
    "revenue",
    "sessions",
    "conversions",
    "bounce_rate",
    "avg_session_duration",
    "active_users",
    "page_views",
    "new_users",
)


def upgrade() -> None:
    """Apply migration - create metric and report tables."""
    # Create metric table
    op.create_table(
        "metric",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("value", sa.Double(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(length=100), nullable=False, server_default="default"),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "name IN (" + ", ".join(f"'{name}'" for name in METRIC_NAMES) + ")",
            name="ck_metric_registered_name",
        ),
    )
    op.create_index("ix_metric_name", "metric", ["name"])
    op.create_index("ix_metric_timestamp", "metric", ["timestamp"])
    op.create_index("ix_metric_source", "metric", ["source"])
    op.create_index("ix_metric_name_timestamp", "metric", ["name", "timestamp"])
    op.create_index(
        "ix_metric_name_source_timestamp", "metric", ["name", "source", "timestamp"]
    )

    # Create report table
    op.create_table(
        "report",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("report_id", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=1000), nullable=False, server_default=""),
        # Aggregation parameters
        sa.Column("metrics", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("granularity", sa.String(length=10), nullable=False, server_default="day"),
        sa.Column("source", sa.String(length=100), nullable=True),
        # Rendering and schedule
        sa.Column("format", sa.String(length=10), nullable=False, server_default="pdf"),
        sa.Column("schedule", sa.String(length=10), nullable=False, server_default="once"),
        sa.Column("cron_expression", sa.String(length=50), nullable=True),
        # Generation outcome
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("download_url", sa.String(length=1000), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.String(length=2000), nullable=True),
        sa.Column("error_occurred_at", sa.DateTime(timezone=True), nullable=True),
        # Ownership and delivery
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("last_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "recipients",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="[]",
        ),
        # Timestamps (from TimestampMixin)
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
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_report_valid_status",
        ),
        sa.CheckConstraint("format IN ('pdf', 'csv')", name="ck_report_valid_format"),
        sa.CheckConstraint(
            "schedule IN ('once', 'daily', 'weekly', 'monthly')",
            name="ck_report_valid_schedule",
        ),
        sa.CheckConstraint("end_date >= start_date", name="ck_report_valid_date_range"),
    )
    op.create_index("ix_report_report_id", "report", ["report_id"], unique=True)
    op.create_index("ix_report_status", "report", ["status"])
    op.create_index("ix_report_created_by", "report", ["created_by"])
    op.create_index("ix_report_created_by_created_at", "report", ["created_by", "created_at"])
    op.create_index("ix_report_status_schedule", "report", ["status", "schedule"])
    op.create_index(
        "ix_report_schedule_last_generated", "report", ["schedule", "last_generated_at"]
    )


def downgrade() -> None:
    """Revert migration - drop report and metric tables."""
    op.drop_index("ix_report_schedule_last_generated", table_name="report")
    op.drop_index("ix_report_status_schedule", table_name="report")
    op.drop_index("ix_report_created_by_created_at", table_name="report")
    op.drop_index("ix_report_created_by", table_name="report")
    op.drop_index("ix_report_status", table_name="report")
    op.drop_index("ix_report_report_id", table_name="report")
    op.drop_table("report")

    op.drop_index("ix_metric_name_source_timestamp", table_name="metric")
    op.drop_index("ix_metric_name_timestamp", table_name="metric")
    op.drop_index("ix_metric_source", table_name="metric")
    op.drop_index("ix_metric_timestamp", table_name="metric")
    op.drop_index("ix_metric_name", table_name="metric")
    op.drop_table("metric")
