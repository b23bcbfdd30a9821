"""Analytics module: bucketed time series and KPI comparisons.

Serves the dashboard and the report generator from the metric store through
a best-effort cache.
"""

from app.features.analytics.routes import router
from app.features.analytics.schemas import (
    KPIItem,
    KPIResponse,
    TimeSeriesResponse,
    TrendPoint,
)
from app.features.analytics.service import AggregationService

__all__ = [
    "AggregationService",
    "KPIItem",
    "KPIResponse",
    "TimeSeriesResponse",
    "TrendPoint",
    "router",
]
