"""Report definition ORM model.

A report definition captures the parameters the report generator hands to the
aggregation engine (metrics, date range, granularity, optional source), how
the output should be rendered, and how often it recurs. Rendering and file
storage happen outside this service; the row only records the outcome.

State transitions:
- PENDING -> PROCESSING -> COMPLETED | FAILED
- COMPLETED | FAILED -> PROCESSING (regeneration)
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.shared.models import TimestampMixin


class ReportFormat(str, Enum):
    """Output format produced by the renderer."""

    PDF = "pdf"
    CSV = "csv"


class ReportSchedule(str, Enum):
    """How often a report is regenerated."""

    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ReportStatus(str, Enum):
    """Report generation lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_REPORT_TRANSITIONS: dict[ReportStatus, set[ReportStatus]] = {
    ReportStatus.PENDING: {ReportStatus.PROCESSING},
    ReportStatus.PROCESSING: {ReportStatus.COMPLETED, ReportStatus.FAILED},
    ReportStatus.COMPLETED: {ReportStatus.PROCESSING},
    ReportStatus.FAILED: {ReportStatus.PROCESSING},
}

# Cron expressions (06:00 server time) derived from the schedule
SCHEDULE_CRON: dict[ReportSchedule, str | None] = {
    ReportSchedule.ONCE: None,
    ReportSchedule.DAILY: "0 6 * * *",
    ReportSchedule.WEEKLY: "0 6 * * 1",
    ReportSchedule.MONTHLY: "0 6 1 * *",
}


def cron_for_schedule(schedule: ReportSchedule | str) -> str | None:
    """Cron expression for a schedule; None for one-off reports."""
    return SCHEDULE_CRON[ReportSchedule(schedule)]


class Report(TimestampMixin, Base):
    """Persisted report definition and its latest generation outcome.

    Attributes:
        id: Primary key.
        report_id: Public identifier (32-char hex).
        title: Report title.
        description: Free-text description.
        metrics: Metric names to include.
        start_date: Start of the reporting range (inclusive).
        end_date: End of the reporting range (inclusive).
        granularity: Time bucket width.
        source: Optional source tag filter.
        format: Output format.
        schedule: Recurrence.
        cron_expression: Derived from schedule.
        status: Lifecycle state.
        download_url: Location of the rendered artifact.
        file_size: Artifact size in bytes.
        error_message: Last generation failure.
        error_occurred_at: When the last failure happened.
        created_by: Requesting user id from the upstream gateway.
        last_generated_at: Completion time of the last successful run.
        generation_count: Number of successful runs.
        recipients: Email addresses to deliver to.
    """

    __tablename__ = "report"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    report_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(String(1000), default="")

    metrics: Mapped[list[str]] = mapped_column(JSONB)
    start_date: Mapped[datetime.date] = mapped_column(Date)
    end_date: Mapped[datetime.date] = mapped_column(Date)
    granularity: Mapped[str] = mapped_column(String(10), default="day")
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)

    format: Mapped[str] = mapped_column(String(10), default=ReportFormat.PDF.value)
    schedule: Mapped[str] = mapped_column(String(10), default=ReportSchedule.ONCE.value)
    cron_expression: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=ReportStatus.PENDING.value, index=True
    )
    download_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    error_occurred_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_by: Mapped[str] = mapped_column(String(64), index=True)
    last_generated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    generation_count: Mapped[int] = mapped_column(Integer, default=0)
    recipients: Mapped[list[str]] = mapped_column(JSONB, default=list)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_report_valid_status",
        ),
        CheckConstraint("format IN ('pdf', 'csv')", name="ck_report_valid_format"),
        CheckConstraint(
            "schedule IN ('once', 'daily', 'weekly', 'monthly')",
            name="ck_report_valid_schedule",
        ),
        CheckConstraint("end_date >= start_date", name="ck_report_valid_date_range"),
        Index("ix_report_created_by_created_at", "created_by", "created_at"),
        Index("ix_report_status_schedule", "status", "schedule"),
        Index("ix_report_schedule_last_generated", "schedule", "last_generated_at"),
    )

    def to_parameters(self) -> dict[str, Any]:
        """Parameters handed to the aggregation engine."""
        return {
            "metrics": list(self.metrics),
            "start_date": self.start_date,
            "end_date": self.end_date,
            "granularity": self.granularity,
            "source": self.source,
        }
