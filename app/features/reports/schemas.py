"""Pydantic schemas for report definition endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from app.features.analytics.schemas import KPIResponse, TimeSeriesRow
from app.features.metrics.bucketing import TimeGranularity, resolve_granularity
from app.features.reports.models import ReportFormat, ReportSchedule, ReportStatus

# =============================================================================
# Requests
# =============================================================================


class ReportCreate(BaseModel):
    """Request schema for defining a report.

    The aggregation parameters mirror the time-series endpoint; the report
    generator replays them on every scheduled run.
    """

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200, description="Report title.")
    description: str = Field("", max_length=1000, description="Free-text description.")
    metrics: list[str] = Field(
        ...,
        min_length=1,
        description="Metric names to include, e.g. ['revenue', 'sessions'].",
    )
    start_date: date = Field(..., description="Start of reporting range (inclusive).")
    end_date: date = Field(..., description="End of reporting range (inclusive).")
    granularity: TimeGranularity = Field(TimeGranularity.DAY, description="Bucket width.")
    source: str | None = Field(None, max_length=100, description="Optional source filter.")
    format: ReportFormat = Field(ReportFormat.PDF, description="Output format: pdf or csv.")
    schedule: ReportSchedule = Field(
        ReportSchedule.ONCE,
        description="Recurrence: once, daily, weekly, or monthly.",
    )
    recipients: list[EmailStr] = Field(
        default_factory=list,
        description="Email addresses that receive the rendered report.",
    )

    @field_validator("metrics")
    @classmethod
    def validate_metrics(cls, v: list[str]) -> list[str]:
        """Strip names and drop blanks; at least one must remain."""
        names = [name.strip() for name in v if name.strip()]
        if not names:
            raise ValueError("At least one metric is required")
        return list(dict.fromkeys(names))

    @model_validator(mode="after")
    def validate_date_range(self) -> ReportCreate:
        """Ensure end_date >= start_date."""
        if self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self


# =============================================================================
# Responses
# =============================================================================


class ReportResponse(BaseModel):
    """A stored report definition and its latest generation outcome."""

    model_config = ConfigDict(from_attributes=True)

    report_id: str = Field(..., description="Report identifier (32-char hex).")
    title: str
    description: str
    metrics: list[str]
    start_date: date
    end_date: date
    granularity: TimeGranularity
    source: str | None
    format: ReportFormat
    schedule: ReportSchedule
    cron_expression: str | None = Field(
        None,
        description="Cron expression derived from the schedule; null for one-off reports.",
    )
    status: ReportStatus
    download_url: str | None
    file_size: int | None
    error_message: str | None
    error_occurred_at: datetime | None
    created_by: str
    last_generated_at: datetime | None
    generation_count: int
    recipients: list[str]
    created_at: datetime
    updated_at: datetime

    @field_validator("granularity", mode="before")
    @classmethod
    def resolve_stored_granularity(cls, v: object) -> TimeGranularity:
        """Stored rows may hold legacy widths; those read back as day."""
        return resolve_granularity(v)  # type: ignore[arg-type]


class ReportListResponse(BaseModel):
    """Paginated list of a user's reports, newest first."""

    reports: list[ReportResponse]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    pages: int = Field(..., ge=0)


class ReportDataResponse(BaseModel):
    """Aggregated data produced for one report generation run.

    Handed to the renderer, which owns PDF/CSV output.
    """

    report_id: str
    status: ReportStatus
    rows: list[TimeSeriesRow] = Field(
        ...,
        description="Time-series rows for the report's metrics, ordered by date.",
    )
    kpis: KPIResponse
