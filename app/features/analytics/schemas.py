"""Pydantic schemas for analytics endpoints.

The time-series and KPI shapes are consumed by the dashboard and by the report
generator, so their JSON field names are part of a stable contract: rows are
``{"date": ..., <metric>: <number>, ...}`` and KPI items use ``previousValue``.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.features.metrics.bucketing import TimeGranularity
from app.features.metrics.registry import MetricFormat

# One pivoted row: {"date": bucket_key, metric_a: value, metric_b: value, ...}
TimeSeriesRow = dict[str, Any]


# =============================================================================
# Time Series
# =============================================================================


class TimeSeriesMeta(BaseModel):
    """Echo of the query that produced a time series."""

    total: int = Field(..., ge=0, description="Number of rows (buckets) returned.")
    granularity: TimeGranularity = Field(..., description="Bucket width used for grouping.")
    start_date: date = Field(..., description="Start of the range (inclusive).")
    end_date: date = Field(..., description="End of the range (inclusive).")
    source: str | None = Field(None, description="Source filter applied, null for all sources.")


class TimeSeriesResponse(BaseModel):
    """Multi-metric time series, one row per bucket.

    Every row carries ``date`` plus every requested metric; metrics with no
    observations in a bucket are reported as 0, never omitted.
    """

    data: list[TimeSeriesRow] = Field(
        ...,
        description="Rows ordered by date ascending.",
    )
    meta: TimeSeriesMeta


# =============================================================================
# KPIs
# =============================================================================


class TrendPoint(BaseModel):
    """One day of a KPI sparkline."""

    date: str = Field(..., description="Day in YYYY-MM-DD format.")
    value: float = Field(..., description="Daily total of the metric.")


class KPIItem(BaseModel):
    """Headline metric with prior-period comparison and daily trend."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Metric identifier.")
    label: str = Field(..., description="Display label.")
    value: float = Field(..., description="Aggregate over the current period.")
    previous_value: float = Field(
        ...,
        alias="previousValue",
        description="Aggregate over the previous period of equal length.",
    )
    format: MetricFormat = Field(..., description="Presentation class of the value.")
    trend: list[TrendPoint] = Field(
        default_factory=list,
        description="One point per day of the current period, ascending.",
    )


class PeriodRange(BaseModel):
    """Inclusive calendar-date range."""

    start: date
    end: date


class KPIPeriod(BaseModel):
    """Current period and the equal-length period immediately before it."""

    current: PeriodRange
    previous: PeriodRange


class KPIResponse(BaseModel):
    """KPI summary for the dashboard header."""

    kpis: list[KPIItem]
    period: KPIPeriod


# =============================================================================
# Supporting Queries
# =============================================================================


class BucketStatsItem(BaseModel):
    """Summary statistics of one metric inside one bucket."""

    model_config = ConfigDict(from_attributes=True)

    bucket: str = Field(..., description="Bucket key.")
    avg: float
    sum: float
    min: float
    max: float
    count: int = Field(..., ge=0)


class BucketStatsResponse(BaseModel):
    """Per-bucket statistics for a single metric."""

    metric: str
    granularity: TimeGranularity
    start_date: date
    end_date: date
    buckets: list[BucketStatsItem]


class ObservationItem(BaseModel):
    """Raw metric observation."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    value: float
    timestamp: datetime
    source: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ObservationListResponse(BaseModel):
    """Raw observations for one metric, oldest first."""

    metric: str
    observations: list[ObservationItem]
    total: int = Field(..., ge=0, description="Number of observations returned.")
    limit: int = Field(..., ge=1, description="Row cap applied to the query.")
    truncated: bool = Field(
        ...,
        description="True when the cap was reached and later rows may be missing.",
    )


class TopPageItem(BaseModel):
    """Page-view total for one page."""

    model_config = ConfigDict(from_attributes=True)

    page: str
    views: float = Field(..., ge=0)
    avg_duration: float | None = Field(
        None,
        description="Mean of metadata.duration, rounded to one decimal.",
    )


class TopPagesResponse(BaseModel):
    """Pages ranked by views, highest first."""

    data: list[TopPageItem]
