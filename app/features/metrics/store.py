"""Metric store access.

``MetricStore`` is the narrow query interface the analytics engines depend on.
``SQLMetricStore`` implements it over PostgreSQL with SQLAlchemy 2.0.

Each query opens its own session from the session maker: the KPI engine runs
three queries concurrently and an ``AsyncSession`` must not be shared between
concurrent tasks. Transient failures (connection loss, timeouts) are retried
with bounded exponential backoff; anything left over surfaces as StoreError.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

from sqlalchemy import Double, Select, case, cast, delete, func, select
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.database import get_session_maker
from app.core.exceptions import StoreError
from app.core.logging import get_logger
from app.features.metrics.bucketing import TimeGranularity, bucket_expression
from app.features.metrics.models import Metric

logger = get_logger(__name__)

T = TypeVar("T")

PAGE_VIEWS_METRIC = "page_views"


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True, slots=True)
class GroupedValue:
    """Sum of one metric inside one bucket."""

    bucket: str
    metric: str
    value: float


@dataclass(frozen=True, slots=True)
class WindowAggregate:
    """Sum and mean of one metric over a whole window."""

    sum: float
    avg: float
    count: int = 0


@dataclass(frozen=True, slots=True)
class DailyValue:
    """Daily sum of one metric."""

    date: str
    value: float


@dataclass(frozen=True, slots=True)
class BucketStats:
    """Summary statistics of one metric inside one bucket."""

    bucket: str
    avg: float
    sum: float
    min: float
    max: float
    count: int


@dataclass(frozen=True, slots=True)
class Observation:
    """A raw metric observation."""

    name: str
    value: float
    timestamp: datetime
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PageStat:
    """Page-view total for one page."""

    page: str
    views: float
    avg_duration: float | None


# =============================================================================
# Store Interface
# =============================================================================


class MetricStore(Protocol):
    """Query interface over the metric observations."""

    async def query_grouped(
        self,
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
        granularity: TimeGranularity | str,
        source: str | None = None,
    ) -> list[GroupedValue]:
        """Sum per (bucket, metric), ordered by bucket ascending."""
        ...

    async def query_window_aggregate(
        self,
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> dict[str, WindowAggregate]:
        """Sum and mean per metric over one window, in one pass."""
        ...

    async def query_daily_trend(
        self,
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> dict[str, list[DailyValue]]:
        """Daily sums per metric, each list ordered by date ascending."""
        ...

    async def bucket_stats(
        self,
        name: str,
        start: datetime,
        end: datetime,
        granularity: TimeGranularity | str,
    ) -> list[BucketStats]:
        """avg/sum/min/max/count per bucket for one metric."""
        ...

    async def find_by_time_range(
        self,
        name: str,
        start: datetime,
        end: datetime,
        source: str | None = None,
        limit: int | None = None,
    ) -> list[Observation]:
        """Raw observations ordered by timestamp ascending."""
        ...

    async def top_pages(self, start: datetime, end: datetime, limit: int) -> list[PageStat]:
        """Pages ranked by total page views."""
        ...

    async def purge_expired(self, before: datetime) -> int:
        """Delete observations older than ``before``; return the count."""
        ...


# =============================================================================
# SQL Implementation
# =============================================================================


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, OperationalError | InterfaceError | OSError):
        return True
    return isinstance(error, DBAPIError) and bool(error.connection_invalidated)


class SQLMetricStore:
    """MetricStore over PostgreSQL.

    Args:
        session_maker: Factory for short-lived sessions, one per query.
        settings: Application settings (retry policy).
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_maker = session_maker
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Statement builders
    # -------------------------------------------------------------------------

    @staticmethod
    def grouped_statement(
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
        granularity: TimeGranularity | str,
        source: str | None = None,
    ) -> Select[Any]:
        """Build the multi-metric grouped query."""
        bucket = bucket_expression(Metric.timestamp, granularity)
        stmt = select(
            bucket.label("bucket"),
            Metric.name.label("metric"),
            func.sum(Metric.value).label("value"),
        ).where(
            Metric.name.in_(list(metric_names)),
            Metric.timestamp >= start,
            Metric.timestamp <= end,
        )
        if source is not None:
            stmt = stmt.where(Metric.source == source)
        return stmt.group_by(bucket, Metric.name).order_by(bucket, Metric.name)

    @staticmethod
    def window_statement(
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> Select[Any]:
        """Build the single-window sum/avg query."""
        return (
            select(
                Metric.name.label("metric"),
                func.sum(Metric.value).label("total"),
                func.avg(Metric.value).label("mean"),
                func.count().label("count"),
            )
            .where(
                Metric.name.in_(list(metric_names)),
                Metric.timestamp >= start,
                Metric.timestamp <= end,
            )
            .group_by(Metric.name)
        )

    @staticmethod
    def top_pages_statement(start: datetime, end: datetime, limit: int) -> Select[Any]:
        """Build the page-view ranking; non-numeric durations are left out of the mean."""
        page = Metric.attributes["page"].astext
        duration = Metric.attributes["duration"]
        views = func.sum(Metric.value)
        numeric_duration = case(
            (func.jsonb_typeof(duration) == "number", cast(duration.astext, Double)),
        )
        return (
            select(
                page.label("page"),
                views.label("views"),
                func.avg(numeric_duration).label("avg_duration"),
            )
            .where(
                Metric.name == PAGE_VIEWS_METRIC,
                Metric.timestamp >= start,
                Metric.timestamp <= end,
                page.isnot(None),
            )
            .group_by(page)
            .order_by(views.desc(), page)
            .limit(limit)
        )

    # -------------------------------------------------------------------------
    # Execution with retry
    # -------------------------------------------------------------------------

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``work`` in a fresh session, retrying transient failures.

        Raises:
            StoreError: When retries are exhausted or the error is not transient.
        """
        max_attempts = self.settings.store_retry_attempts + 1

        for attempt in range(1, max_attempts + 1):
            try:
                async with self._session_maker() as session:
                    return await work(session)
            except (SQLAlchemyError, OSError) as e:
                if not _is_transient(e) or attempt >= max_attempts:
                    logger.error(
                        "metrics.store_query_failed",
                        operation=operation,
                        attempts=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise StoreError(
                        f"Metric store query '{operation}' failed",
                        details={"operation": operation, "attempts": attempt},
                    ) from e

                delay = min(
                    self.settings.store_retry_base_delay_seconds * (2 ** (attempt - 1)),
                    self.settings.store_retry_max_delay_seconds,
                )
                logger.warning(
                    "metrics.store_retry",
                    operation=operation,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(delay)

        # range() above always returns or raises
        raise StoreError(f"Metric store query '{operation}' failed")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def query_grouped(
        self,
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
        granularity: TimeGranularity | str,
        source: str | None = None,
    ) -> list[GroupedValue]:
        if not metric_names:
            return []
        stmt = self.grouped_statement(metric_names, start, end, granularity, source)

        async def work(session: AsyncSession) -> list[GroupedValue]:
            result = await session.execute(stmt)
            return [
                GroupedValue(bucket=row.bucket, metric=row.metric, value=float(row.value))
                for row in result.all()
            ]

        values = await self._run("query_grouped", work)
        logger.debug("metrics.grouped_queried", metrics=list(metric_names), rows=len(values))
        return values

    async def query_window_aggregate(
        self,
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> dict[str, WindowAggregate]:
        if not metric_names:
            return {}
        stmt = self.window_statement(metric_names, start, end)

        async def work(session: AsyncSession) -> dict[str, WindowAggregate]:
            result = await session.execute(stmt)
            return {
                row.metric: WindowAggregate(
                    sum=float(row.total),
                    avg=float(row.mean),
                    count=int(row.count),
                )
                for row in result.all()
            }

        return await self._run("query_window_aggregate", work)

    async def query_daily_trend(
        self,
        metric_names: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> dict[str, list[DailyValue]]:
        if not metric_names:
            return {}
        stmt = self.grouped_statement(metric_names, start, end, TimeGranularity.DAY)

        async def work(session: AsyncSession) -> dict[str, list[DailyValue]]:
            result = await session.execute(stmt)
            trends: dict[str, list[DailyValue]] = {}
            for row in result.all():
                trends.setdefault(row.metric, []).append(
                    DailyValue(date=row.bucket, value=float(row.value))
                )
            return trends

        return await self._run("query_daily_trend", work)

    async def bucket_stats(
        self,
        name: str,
        start: datetime,
        end: datetime,
        granularity: TimeGranularity | str,
    ) -> list[BucketStats]:
        bucket = bucket_expression(Metric.timestamp, granularity)
        stmt = (
            select(
                bucket.label("bucket"),
                func.avg(Metric.value).label("avg"),
                func.sum(Metric.value).label("sum"),
                func.min(Metric.value).label("min"),
                func.max(Metric.value).label("max"),
                func.count().label("count"),
            )
            .where(Metric.name == name, Metric.timestamp >= start, Metric.timestamp <= end)
            .group_by(bucket)
            .order_by(bucket)
        )

        async def work(session: AsyncSession) -> list[BucketStats]:
            result = await session.execute(stmt)
            return [
                BucketStats(
                    bucket=row.bucket,
                    avg=float(row.avg),
                    sum=float(row.sum),
                    min=float(row.min),
                    max=float(row.max),
                    count=int(row.count),
                )
                for row in result.all()
            ]

        return await self._run("bucket_stats", work)

    async def find_by_time_range(
        self,
        name: str,
        start: datetime,
        end: datetime,
        source: str | None = None,
        limit: int | None = None,
    ) -> list[Observation]:
        stmt = select(Metric).where(
            Metric.name == name,
            Metric.timestamp >= start,
            Metric.timestamp <= end,
        )
        if source is not None:
            stmt = stmt.where(Metric.source == source)
        stmt = stmt.order_by(Metric.timestamp, Metric.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        async def work(session: AsyncSession) -> list[Observation]:
            result = await session.execute(stmt)
            return [
                Observation(
                    name=metric.name,
                    value=metric.value,
                    timestamp=metric.timestamp,
                    source=metric.source,
                    metadata=dict(metric.attributes or {}),
                )
                for metric in result.scalars().all()
            ]

        return await self._run("find_by_time_range", work)

    async def top_pages(self, start: datetime, end: datetime, limit: int) -> list[PageStat]:
        stmt = self.top_pages_statement(start, end, limit)

        async def work(session: AsyncSession) -> list[PageStat]:
            result = await session.execute(stmt)
            return [
                PageStat(
                    page=row.page,
                    views=float(row.views),
                    avg_duration=round(float(row.avg_duration), 1)
                    if row.avg_duration is not None
                    else None,
                )
                for row in result.all()
            ]

        return await self._run("top_pages", work)

    async def purge_expired(self, before: datetime) -> int:
        stmt = delete(Metric).where(Metric.timestamp < before)

        async def work(session: AsyncSession) -> int:
            result = await session.execute(stmt)
            await session.commit()
            return int(result.rowcount or 0)  # type: ignore[attr-defined]

        deleted = await self._run("purge_expired", work)
        logger.info("metrics.purged", before=before.isoformat(), deleted=deleted)
        return deleted


def get_metric_store() -> MetricStore:
    """Dependency returning the SQL-backed metric store."""
    return SQLMetricStore(get_session_maker())
