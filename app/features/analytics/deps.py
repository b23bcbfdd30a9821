"""FastAPI dependencies wiring the aggregation engine.

The store, cache, and registry each come from their own dependency so tests
and alternate deployments can swap one without touching the others (via
``app.dependency_overrides``).
"""

from fastapi import Depends

from app.core.cache import AnalyticsCache, get_cache
from app.core.config import get_settings
from app.core.exceptions import ValidationError
from app.features.analytics.service import AggregationService, normalize_metric_names
from app.features.metrics.registry import MetricRegistry, get_metric_registry
from app.features.metrics.store import MetricStore, get_metric_store


def get_aggregation_service(
    store: MetricStore = Depends(get_metric_store),
    cache: AnalyticsCache = Depends(get_cache),
    registry: MetricRegistry = Depends(get_metric_registry),
) -> AggregationService:
    """Build a per-request aggregation service over shared resources."""
    return AggregationService(store=store, cache=cache, registry=registry)


def parse_metric_list(raw: str, registry: MetricRegistry) -> list[str]:
    """Parse a comma-separated ``metrics`` query value.

    Unknown names are accepted (they zero-fill) unless
    ``analytics_strict_metric_names`` is enabled.

    Raises:
        ValidationError: If no metric names remain, or strict mode rejects one.
    """
    names = normalize_metric_names(raw.split(","))
    if not names:
        raise ValidationError(
            "At least one metric is required",
            details={"metrics": raw},
        )
    ensure_known_metrics(names, registry)
    return names


def ensure_known_metrics(names: list[str], registry: MetricRegistry) -> None:
    """Reject unregistered metric names when strict mode is on."""
    if not get_settings().analytics_strict_metric_names:
        return
    unknown = registry.unknown(names)
    if unknown:
        raise ValidationError(
            f"Unknown metric(s): {', '.join(unknown)}",
            details={"unknown": unknown, "allowed": registry.metric_ids},
        )
