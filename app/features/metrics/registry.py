"""Metric configuration registry.

Maps each metric identifier to its display label, value format, and the
policy used to collapse many raw observations into one value. The registry is
built once at startup and handed to the engines by dependency injection; it
is immutable, so concurrent readers need no synchronisation.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType


class MetricFormat(str, Enum):
    """How a metric value is presented by the dashboard."""

    NUMBER = "number"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DURATION = "duration"


class AggregationPolicy(str, Enum):
    """How N observations in a window become one value."""

    SUM = "sum"
    AVERAGE = "avg"


@dataclass(frozen=True, slots=True)
class MetricDefinition:
    """Static configuration for one metric."""

    id: str
    label: str
    format: MetricFormat
    aggregation: AggregationPolicy


class MetricRegistry(Mapping[str, MetricDefinition]):
    """Read-only, ordered mapping of metric id to definition."""

    def __init__(self, definitions: Iterable[MetricDefinition]) -> None:
        entries: dict[str, MetricDefinition] = {}
        for definition in definitions:
            if definition.id in entries:
                raise ValueError(f"Duplicate metric definition: {definition.id}")
            entries[definition.id] = definition
        self._entries = MappingProxyType(entries)

    def __getitem__(self, name: str) -> MetricDefinition:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"MetricRegistry({list(self._entries)!r})"

    @property
    def metric_ids(self) -> list[str]:
        """Metric ids in registration order."""
        return list(self._entries)

    def aggregation_for(self, name: str) -> AggregationPolicy:
        """Aggregation policy for ``name``; unregistered metrics are summed."""
        definition = self._entries.get(name)
        return definition.aggregation if definition else AggregationPolicy.SUM

    def resolve(self, name: str, total: float, mean: float) -> float:
        """Pick the sum or the mean for ``name`` according to its policy."""
        if self.aggregation_for(name) is AggregationPolicy.AVERAGE:
            return mean
        return total

    def unknown(self, names: Iterable[str]) -> list[str]:
        """Names not present in the registry, in input order."""
        return [name for name in names if name not in self._entries]


DEFAULT_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition("revenue", "Revenue", MetricFormat.CURRENCY, AggregationPolicy.SUM),
    MetricDefinition("sessions", "Sessions", MetricFormat.NUMBER, AggregationPolicy.SUM),
    MetricDefinition("conversions", "Conversions", MetricFormat.NUMBER, AggregationPolicy.SUM),
    MetricDefinition(
        "bounce_rate", "Bounce Rate", MetricFormat.PERCENTAGE, AggregationPolicy.AVERAGE
    ),
    MetricDefinition(
        "avg_session_duration",
        "Avg. Session Duration",
        MetricFormat.DURATION,
        AggregationPolicy.AVERAGE,
    ),
    MetricDefinition("active_users", "Active Users", MetricFormat.NUMBER, AggregationPolicy.SUM),
    MetricDefinition("page_views", "Page Views", MetricFormat.NUMBER, AggregationPolicy.SUM),
    MetricDefinition("new_users", "New Users", MetricFormat.NUMBER, AggregationPolicy.SUM),
)


def build_default_registry() -> MetricRegistry:
    """Build the registry of the eight built-in business metrics."""
    return MetricRegistry(DEFAULT_DEFINITIONS)


@lru_cache
def get_metric_registry() -> MetricRegistry:
    """Get the registry constructed once for this process."""
    return build_default_registry()
