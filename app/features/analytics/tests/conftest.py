"""Test fixtures for analytics module.

``InMemoryMetricStore`` applies the same bucketing rule as the SQL store
(``bucket_key``) to a list of observations, so engine tests run without
PostgreSQL. ``MemoryCache`` records every read and write.
"""

from collections import defaultdict
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

import pytest

from app.core.cache import decode_payload, encode_payload
from app.core.config import Settings
from app.features.analytics.service import AggregationService
from app.features.metrics.bucketing import TimeGranularity, bucket_key, to_utc
from app.features.metrics.registry import MetricRegistry, build_default_registry
from app.features.metrics.store import (
    BucketStats,
    DailyValue,
    GroupedValue,
    Observation,
    PageStat,
    WindowAggregate,
)


def ts(value: str) -> datetime:
    """Parse an ISO timestamp as UTC."""
    return datetime.fromisoformat(value).replace(tzinfo=UTC)


class InMemoryMetricStore:
    """MetricStore over a list of observations."""

    def __init__(self, observations: Sequence[Observation] = ()) -> None:
        self.observations = list(observations)
        self.calls: list[tuple[str, datetime, datetime]] = []
        self.failures: dict[str, Exception] = {}

    def add(self, name: str, value: float, when: str, source: str = "default", **metadata):
        self.observations.append(Observation(name, value, ts(when), source, metadata))

    def _select(self, names, start, end, source=None) -> list[Observation]:
        return [
            obs
            for obs in self.observations
            if obs.name in names
            and start <= to_utc(obs.timestamp) <= end
            and (source is None or obs.source == source)
        ]

    def _record(self, operation: str, start: datetime, end: datetime) -> None:
        self.calls.append((operation, start, end))
        if operation in self.failures:
            raise self.failures[operation]

    def _group(self, metric_names, start, end, granularity, source=None) -> list[GroupedValue]:
        sums: dict[tuple[str, str], float] = defaultdict(float)
        for obs in self._select(metric_names, start, end, source):
            sums[(bucket_key(obs.timestamp, granularity), obs.name)] += obs.value
        return [
            GroupedValue(bucket, metric, value) for (bucket, metric), value in sorted(sums.items())
        ]

    async def query_grouped(self, metric_names, start, end, granularity, source=None):
        self._record("query_grouped", start, end)
        return self._group(metric_names, start, end, granularity, source)

    async def query_window_aggregate(self, metric_names, start, end):
        self._record("query_window_aggregate", start, end)
        values: dict[str, list[float]] = defaultdict(list)
        for obs in self._select(metric_names, start, end):
            values[obs.name].append(obs.value)
        return {
            name: WindowAggregate(sum=sum(vals), avg=sum(vals) / len(vals), count=len(vals))
            for name, vals in values.items()
        }

    async def query_daily_trend(self, metric_names, start, end):
        self._record("query_daily_trend", start, end)
        trends: dict[str, list[DailyValue]] = defaultdict(list)
        for item in self._group(metric_names, start, end, TimeGranularity.DAY):
            trends[item.metric].append(DailyValue(item.bucket, item.value))
        return dict(trends)

    async def bucket_stats(self, name, start, end, granularity):
        self._record("bucket_stats", start, end)
        buckets: dict[str, list[float]] = defaultdict(list)
        for obs in self._select([name], start, end):
            buckets[bucket_key(obs.timestamp, granularity)].append(obs.value)
        return [
            BucketStats(key, sum(v) / len(v), sum(v), min(v), max(v), len(v))
            for key, v in sorted(buckets.items())
        ]

    async def find_by_time_range(self, name, start, end, source=None, limit=None):
        self._record("find_by_time_range", start, end)
        found = sorted(self._select([name], start, end, source), key=lambda obs: obs.timestamp)
        return found[:limit] if limit is not None else found

    async def top_pages(self, start, end, limit):
        self._record("top_pages", start, end)
        views: dict[str, float] = defaultdict(float)
        for obs in self._select(["page_views"], start, end):
            if "page" in obs.metadata:
                views[obs.metadata["page"]] += obs.value
        ranked = sorted(views.items(), key=lambda item: (-item[1], item[0]))[:limit]
        return [PageStat(page, total, None) for page, total in ranked]

    async def purge_expired(self, before):
        kept = [obs for obs in self.observations if obs.timestamp >= before]
        deleted = len(self.observations) - len(kept)
        self.observations = kept
        return deleted


class MemoryCache:
    """AnalyticsCache storing JSON-encoded payloads in a dict."""

    def __init__(self) -> None:
        self.entries: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.gets: list[str] = []

    async def get(self, key: str, loader: Callable[[Any], Any] | None = None) -> Any | None:
        self.gets.append(key)
        raw = self.entries.get(key)
        if raw is None:
            return None
        payload = decode_payload(raw)
        return loader(payload) if loader is not None else payload

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.entries[key] = encode_payload(value)
        self.ttls[key] = ttl_seconds

    async def ping(self) -> bool | None:
        return True

    async def close(self) -> None:
        return None


@pytest.fixture
def settings() -> Settings:
    return Settings(cache_key_prefix="test")


@pytest.fixture
def registry() -> MetricRegistry:
    return build_default_registry()


@pytest.fixture
def store() -> InMemoryMetricStore:
    return InMemoryMetricStore()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def service(store, cache, registry, settings) -> AggregationService:
    return AggregationService(store=store, cache=cache, registry=registry, settings=settings)
