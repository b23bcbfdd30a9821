"""Metric observations: storage, configuration registry, and time bucketing."""

from app.features.metrics.bucketing import TimeGranularity, bucket_key, resolve_granularity
from app.features.metrics.models import METRIC_NAMES, Metric
from app.features.metrics.registry import (
    AggregationPolicy,
    MetricDefinition,
    MetricFormat,
    MetricRegistry,
    build_default_registry,
    get_metric_registry,
)
from app.features.metrics.store import MetricStore, SQLMetricStore, get_metric_store

__all__ = [
    "METRIC_NAMES",
    "AggregationPolicy",
    "Metric",
    "MetricDefinition",
    "MetricFormat",
    "MetricRegistry",
    "MetricStore",
    "SQLMetricStore",
    "TimeGranularity",
    "bucket_key",
    "build_default_registry",
    "get_metric_registry",
    "get_metric_store",
    "resolve_granularity",
]
