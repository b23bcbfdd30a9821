"""API routes for analytics endpoints.

Time-series and KPI data for the dashboard, plus supporting breakdowns.
Parameters are validated here; the aggregation engine receives clean input.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query

from app.core.logging import get_logger
from app.features.analytics.deps import (
    ensure_known_metrics,
    get_aggregation_service,
    parse_metric_list,
)
from app.features.analytics.schemas import (
    BucketStatsResponse,
    KPIResponse,
    ObservationListResponse,
    TimeSeriesMeta,
    TimeSeriesResponse,
    TopPagesResponse,
)
from app.features.analytics.service import AggregationService
from app.features.metrics.bucketing import TimeGranularity

logger = get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


# =============================================================================
# Time Series
# =============================================================================


@router.get(
    "/metrics",
    response_model=TimeSeriesResponse,
    summary="Bucketed time series for one or more metrics",
    description="""
Group metric observations into hour/day/week/month buckets and pivot them into
one row per bucket.

**Row shape**: `{"date": "<bucket>", "<metric>": <number>, ...}` with every
requested metric present; buckets with no observations for a metric report 0.

**Bucket keys**:
- `hour`: `YYYY-MM-DDTHH:00:00`
- `day`: `YYYY-MM-DD`
- `week`: Monday of the ISO week, `YYYY-MM-DD`
- `month`: `YYYY-MM-01`

**Date Range**: whole days, both ends inclusive (UTC).

**Example**:
`GET /analytics/metrics?start_date=2025-01-01&end_date=2025-01-31&metrics=revenue,sessions`
""",
)
async def get_metrics(
    start_date: date = Query(..., description="Start of range (inclusive). Format: YYYY-MM-DD."),
    end_date: date = Query(..., description="End of range (inclusive). Format: YYYY-MM-DD."),
    metrics: str = Query(
        ...,
        min_length=1,
        description="Comma-separated metric names, e.g. 'revenue,sessions'.",
    ),
    granularity: TimeGranularity = Query(
        TimeGranularity.DAY,
        description="Bucket width: hour, day, week, or month.",
    ),
    source: str | None = Query(
        None,
        description="Only include observations with this source tag.",
    ),
    service: AggregationService = Depends(get_aggregation_service),
) -> TimeSeriesResponse:
    """Return the pivoted time series for the requested metrics."""
    metric_names = parse_metric_list(metrics, service.registry)
    source_filter = source or None

    rows = await service.get_time_series(
        start_date=start_date,
        end_date=end_date,
        granularity=granularity,
        metrics=metric_names,
        source=source_filter,
    )

    return TimeSeriesResponse(
        data=rows,
        meta=TimeSeriesMeta(
            total=len(rows),
            granularity=granularity,
            start_date=start_date,
            end_date=end_date,
            source=source_filter,
        ),
    )


# =============================================================================
# KPIs
# =============================================================================


@router.get(
    "/kpi",
    response_model=KPIResponse,
    summary="KPI summary with period-over-period comparison",
    description="""
Compute every registered KPI for the requested window and for the previous
window of the same length (ending the day before `start_date`), with a daily
trend covering the current window.

Rate and duration metrics (`bounce_rate`, `avg_session_duration`) are averaged;
all other metrics are summed.

**Example**: `GET /analytics/kpi?start_date=2025-01-08&end_date=2025-01-14`
compares against 2025-01-01..2025-01-07.
""",
)
async def get_kpis(
    start_date: date = Query(..., description="Start of period (inclusive). Format: YYYY-MM-DD."),
    end_date: date = Query(..., description="End of period (inclusive). Format: YYYY-MM-DD."),
    service: AggregationService = Depends(get_aggregation_service),
) -> KPIResponse:
    """Return KPI values, previous values, and trends."""
    return await service.get_kpis(start_date=start_date, end_date=end_date)


# =============================================================================
# Supporting Breakdowns
# =============================================================================


@router.get(
    "/metrics/{metric}/stats",
    response_model=BucketStatsResponse,
    summary="Per-bucket statistics for one metric",
)
async def get_metric_stats(
    metric: str,
    start_date: date = Query(..., description="Start of range (inclusive)."),
    end_date: date = Query(..., description="End of range (inclusive)."),
    granularity: TimeGranularity = Query(TimeGranularity.DAY, description="Bucket width."),
    service: AggregationService = Depends(get_aggregation_service),
) -> BucketStatsResponse:
    """Return avg/sum/min/max/count per bucket."""
    ensure_known_metrics([metric], service.registry)
    return await service.get_bucket_stats(
        metric=metric,
        start_date=start_date,
        end_date=end_date,
        granularity=granularity,
    )


@router.get(
    "/observations",
    response_model=ObservationListResponse,
    summary="Raw observations for one metric",
)
async def list_observations(
    metric: str = Query(..., min_length=1, description="Metric name."),
    start_date: date = Query(..., description="Start of range (inclusive)."),
    end_date: date = Query(..., description="End of range (inclusive)."),
    source: str | None = Query(None, description="Source tag filter."),
    limit: int | None = Query(
        None,
        ge=1,
        description="Maximum rows to return; capped by the server's row limit.",
    ),
    service: AggregationService = Depends(get_aggregation_service),
) -> ObservationListResponse:
    """Return observations ordered by timestamp ascending."""
    ensure_known_metrics([metric], service.registry)
    return await service.get_observations(
        metric=metric,
        start_date=start_date,
        end_date=end_date,
        source=source or None,
        limit=limit,
    )


@router.get(
    "/top-pages",
    response_model=TopPagesResponse,
    summary="Most viewed pages",
)
async def get_top_pages(
    start_date: date = Query(..., description="Start of range (inclusive)."),
    end_date: date = Query(..., description="End of range (inclusive)."),
    limit: int = Query(10, ge=1, le=100, description="Number of pages (1-100, default 10)."),
    service: AggregationService = Depends(get_aggregation_service),
) -> TopPagesResponse:
    """Return pages ranked by total page views."""
    return await service.get_top_pages(start_date=start_date, end_date=end_date, limit=limit)
