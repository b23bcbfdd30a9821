"""Aggregation and KPI engines.

``AggregationService`` turns raw metric observations into date-bucketed,
multi-metric rows and period-over-period KPI summaries. It is stateless:
the metric store, the cache, and the metric registry are injected, so any
number of instances can serve requests concurrently.

Reads go cache-aside: look up the cache, compute from the store on a miss,
then populate the cache. The cache never affects the value returned.
"""

import asyncio
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta
from typing import Any
from urllib.parse import quote

from app.core.cache import AnalyticsCache
from app.core.config import Settings, get_settings
from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.features.analytics.schemas import (
    BucketStatsItem,
    BucketStatsResponse,
    KPIItem,
    KPIPeriod,
    KPIResponse,
    ObservationItem,
    ObservationListResponse,
    PeriodRange,
    TimeSeriesRow,
    TopPageItem,
    TopPagesResponse,
    TrendPoint,
)
from app.features.metrics.bucketing import (
    TimeGranularity,
    day_bounds,
    iter_days,
    resolve_granularity,
)
from app.features.metrics.registry import MetricRegistry
from app.features.metrics.store import DailyValue, GroupedValue, MetricStore

logger = get_logger(__name__)

DATE_KEY = "date"


# =============================================================================
# Pure helpers
# =============================================================================


def normalize_metric_names(metrics: Iterable[str]) -> list[str]:
    """Strip, drop blanks, and de-duplicate metric names, keeping first occurrence.

    Raises:
        ValidationError: If a metric is named ``date`` (the row key).
    """
    names: list[str] = []
    for raw in metrics:
        name = raw.strip()
        if not name or name in names:
            continue
        if name == DATE_KEY:
            raise ValidationError(
                "'date' is reserved and cannot be requested as a metric",
                details={"metric": name},
            )
        names.append(name)
    return names


def validate_date_range(start_date: date, end_date: date, max_days: int | None = None) -> None:
    """Reject inverted or oversized date ranges.

    Raises:
        ValidationError: If end precedes start or the range exceeds ``max_days``.
    """
    if end_date < start_date:
        raise ValidationError(
            "end_date must be on or after start_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    span_days = (end_date - start_date).days + 1
    if max_days is not None and span_days > max_days:
        raise ValidationError(
            f"Date range spans {span_days} days; the maximum is {max_days}",
            details={"span_days": span_days, "max_days": max_days},
        )


def previous_period(start_date: date, end_date: date) -> tuple[date, date]:
    """Equal-length window ending the day before ``start_date``.

    Both bounds are inclusive, so a 7-day window 2025-01-08..2025-01-14 maps
    to 2025-01-01..2025-01-07.
    """
    length = timedelta(days=(end_date - start_date).days + 1)
    return start_date - length, end_date - length


def _compact(day: date) -> str:
    return day.isoformat().replace("-", "")


def timeseries_cache_key(
    prefix: str,
    metrics: Sequence[str],
    granularity: TimeGranularity | str,
    start_date: date,
    end_date: date,
    source: str | None,
) -> str:
    """Deterministic cache key for a time-series request.

    Metric names and the source are URL-quoted so separators inside them can
    not make two different requests share a key; ``all`` (no filter) can never
    equal a quoted ``s=...`` source segment.
    """
    metric_part = ",".join(quote(name, safe="") for name in sorted(set(metrics)))
    source_part = "all" if source is None else f"s={quote(source, safe='')}"
    return (
        f"{prefix}:ts:{metric_part}:{resolve_granularity(granularity).value}:"
        f"{_compact(start_date)}-{_compact(end_date)}:{source_part}"
    )


def kpi_cache_key(prefix: str, start_date: date, end_date: date) -> str:
    """Cache key for a KPI request; the KPI metric set is fixed."""
    return f"{prefix}:kpi:{_compact(start_date)}-{_compact(end_date)}"


def pivot_rows(grouped: Iterable[GroupedValue], metrics: Sequence[str]) -> list[TimeSeriesRow]:
    """Pivot sparse (bucket, metric, value) triples into one row per bucket.

    Each row holds ``date`` plus exactly the requested metrics; a metric with
    no observations in a bucket is 0. Rows are sorted by date, which for the
    zero-padded bucket keys is chronological order.
    """
    buckets: dict[str, dict[str, float]] = {}
    for item in grouped:
        values = buckets.setdefault(item.bucket, {})
        values[item.metric] = values.get(item.metric, 0.0) + item.value

    rows: list[TimeSeriesRow] = []
    for bucket in sorted(buckets):
        values = buckets[bucket]
        row: TimeSeriesRow = {DATE_KEY: bucket}
        for metric in metrics:
            row[metric] = values.get(metric, 0.0)
        rows.append(row)
    return rows


def densify_trend(
    points: Iterable[DailyValue], start_date: date, end_date: date
) -> list[TrendPoint]:
    """One trend point per day of the window, zero where nothing was observed."""
    by_day = {point.date: point.value for point in points}
    return [
        TrendPoint(date=day.isoformat(), value=by_day.get(day.isoformat(), 0.0))
        for day in iter_days(start_date, end_date)
    ]


def _load_rows(payload: Any) -> list[TimeSeriesRow]:
    if not isinstance(payload, list) or not all(isinstance(row, dict) for row in payload):
        raise ValueError("Cached time series is not a list of rows")
    return payload


def _first_leaf(group: BaseExceptionGroup) -> BaseException:
    first = group.exceptions[0]
    if isinstance(first, BaseExceptionGroup):
        return _first_leaf(first)
    return first


# =============================================================================
# Service
# =============================================================================


class AggregationService:
    """Time-series and KPI aggregation over the metric store.

    Args:
        store: Metric store queried on cache misses.
        cache: Best-effort cache; a NullCache disables caching.
        registry: Metric configuration (labels, formats, sum/avg policy).
        settings: Application settings (TTLs, key prefix, limits).
    """

    def __init__(
        self,
        store: MetricStore,
        cache: AnalyticsCache,
        registry: MetricRegistry,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.registry = registry
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Time series
    # -------------------------------------------------------------------------

    async def get_time_series(
        self,
        start_date: date,
        end_date: date,
        granularity: TimeGranularity | str,
        metrics: Sequence[str],
        source: str | None = None,
    ) -> list[TimeSeriesRow]:
        """Bucketed multi-metric time series.

        Args:
            start_date: First day of the range (inclusive).
            end_date: Last day of the range (inclusive).
            granularity: Bucket width; unknown values bucket by day.
            metrics: Metric names to include as columns.
            source: Optional source tag filter.

        Returns:
            Rows ``{"date": bucket, <metric>: value, ...}`` sorted by date.
            Empty when no metrics were requested or nothing was observed.

        Raises:
            ValidationError: If the date range is inverted or too long.
            StoreError: If the metric store query fails.
        """
        requested = normalize_metric_names(metrics)
        if not requested:
            logger.info("analytics.timeseries_no_metrics")
            return []
        validate_date_range(start_date, end_date, self.settings.analytics_max_date_range_days)

        resolved = resolve_granularity(granularity)
        cache_key = timeseries_cache_key(
            self.settings.cache_key_prefix, requested, resolved, start_date, end_date, source
        )
        cached = await self.cache.get(cache_key, loader=_load_rows)
        if cached is not None:
            logger.debug("analytics.timeseries_cache_hit", cache_key=cache_key)
            return cached

        start, end = day_bounds(start_date, end_date)
        grouped = await self.store.query_grouped(requested, start, end, resolved, source)
        rows = pivot_rows(grouped, requested)

        await self.cache.set(cache_key, rows, self.settings.cache_timeseries_ttl_seconds)

        logger.info(
            "analytics.timeseries_computed",
            metrics=requested,
            granularity=resolved.value,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            source=source,
            rows=len(rows),
        )
        return rows

    # -------------------------------------------------------------------------
    # KPIs
    # -------------------------------------------------------------------------

    async def get_kpis(self, start_date: date, end_date: date) -> KPIResponse:
        """Current vs previous period for every registered metric, plus daily trend.

        The three store queries (current window, previous window, daily trend)
        run concurrently in a task group. If one fails, the others are
        cancelled, the group settles, and the first failure is raised; no
        partial response is returned or cached.

        Raises:
            ValidationError: If the date range is inverted or too long.
            StoreError: If any of the store queries fails.
        """
        validate_date_range(start_date, end_date, self.settings.analytics_max_date_range_days)
        prev_start_date, prev_end_date = previous_period(start_date, end_date)

        cache_key = kpi_cache_key(self.settings.cache_key_prefix, start_date, end_date)
        cached = await self.cache.get(cache_key, loader=KPIResponse.model_validate)
        if cached is not None:
            logger.debug("analytics.kpis_cache_hit", cache_key=cache_key)
            return cached

        metric_ids = self.registry.metric_ids
        current_start, current_end = day_bounds(start_date, end_date)
        previous_start, previous_end = day_bounds(prev_start_date, prev_end_date)

        try:
            async with asyncio.TaskGroup() as group:
                current_task = group.create_task(
                    self._aggregate_window(metric_ids, current_start, current_end)
                )
                previous_task = group.create_task(
                    self._aggregate_window(metric_ids, previous_start, previous_end)
                )
                trend_task = group.create_task(
                    self.store.query_daily_trend(metric_ids, current_start, current_end)
                )
        except ExceptionGroup as group_error:
            error = _first_leaf(group_error)
            logger.error(
                "analytics.kpis_failed",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
                failures=len(group_error.exceptions),
                error=str(error),
                error_type=type(error).__name__,
            )
            raise error from None

        current = current_task.result()
        previous = previous_task.result()
        trends = trend_task.result()

        kpis = [
            KPIItem(
                id=definition.id,
                label=definition.label,
                value=current.get(definition.id, 0.0),
                previous_value=previous.get(definition.id, 0.0),
                format=definition.format,
                trend=densify_trend(trends.get(definition.id, []), start_date, end_date),
            )
            for definition in self.registry.values()
        ]
        response = KPIResponse(
            kpis=kpis,
            period=KPIPeriod(
                current=PeriodRange(start=start_date, end=end_date),
                previous=PeriodRange(start=prev_start_date, end=prev_end_date),
            ),
        )

        await self.cache.set(
            cache_key,
            response.model_dump(mode="json", by_alias=True),
            self.settings.cache_kpi_ttl_seconds,
        )

        logger.info(
            "analytics.kpis_computed",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            previous_start=prev_start_date.isoformat(),
            previous_end=prev_end_date.isoformat(),
            metrics_with_data=len(current),
        )
        return response

    async def _aggregate_window(
        self,
        metric_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> dict[str, float]:
        """Window aggregate per metric, resolved to sum or mean by the registry."""
        aggregates = await self.store.query_window_aggregate(metric_ids, start, end)
        return {
            name: self.registry.resolve(name, aggregate.sum, aggregate.avg)
            for name, aggregate in aggregates.items()
        }

    # -------------------------------------------------------------------------
    # Supporting queries (uncached)
    # -------------------------------------------------------------------------

    async def get_bucket_stats(
        self,
        metric: str,
        start_date: date,
        end_date: date,
        granularity: TimeGranularity | str,
    ) -> BucketStatsResponse:
        """avg/sum/min/max/count per bucket for one metric."""
        validate_date_range(start_date, end_date, self.settings.analytics_max_date_range_days)
        resolved = resolve_granularity(granularity)
        start, end = day_bounds(start_date, end_date)

        stats = await self.store.bucket_stats(metric, start, end, resolved)

        return BucketStatsResponse(
            metric=metric,
            granularity=resolved,
            start_date=start_date,
            end_date=end_date,
            buckets=[BucketStatsItem.model_validate(item) for item in stats],
        )

    async def get_observations(
        self,
        metric: str,
        start_date: date,
        end_date: date,
        source: str | None = None,
        limit: int | None = None,
    ) -> ObservationListResponse:
        """Raw observations, capped at ``analytics_max_rows``."""
        validate_date_range(start_date, end_date, self.settings.analytics_max_date_range_days)
        max_rows = self.settings.analytics_max_rows
        effective_limit = min(limit, max_rows) if limit else max_rows
        start, end = day_bounds(start_date, end_date)

        # One extra row tells a full page apart from a truncated one
        fetched = await self.store.find_by_time_range(
            metric, start, end, source=source, limit=effective_limit + 1
        )
        observations = fetched[:effective_limit]

        logger.info(
            "analytics.observations_listed",
            metric=metric,
            count=len(observations),
            limit=effective_limit,
        )
        return ObservationListResponse(
            metric=metric,
            observations=[ObservationItem.model_validate(item) for item in observations],
            total=len(observations),
            limit=effective_limit,
            truncated=len(fetched) > effective_limit,
        )

    async def get_top_pages(self, start_date: date, end_date: date, limit: int) -> TopPagesResponse:
        """Pages ranked by total page views."""
        validate_date_range(start_date, end_date, self.settings.analytics_max_date_range_days)
        effective_limit = max(1, min(limit, self.settings.analytics_top_pages_max_limit))
        start, end = day_bounds(start_date, end_date)

        pages = await self.store.top_pages(start, end, effective_limit)

        return TopPagesResponse(data=[TopPageItem.model_validate(page) for page in pages])
