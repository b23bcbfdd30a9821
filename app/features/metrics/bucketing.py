"""Time bucketing for metric aggregation.

A bucket key is the canonical start of the interval a timestamp falls in:

- hour:  ``YYYY-MM-DDTHH:00:00``
- day:   ``YYYY-MM-DD``
- week:  ``YYYY-MM-DD`` of the ISO week's Monday
- month: ``YYYY-MM-01``

All formats are zero padded, so sorting keys as strings sorts them in time.
Buckets are computed in UTC. ``bucket_key`` is the Python definition and
``bucket_expression`` is the same rule expressed in PostgreSQL, so grouping
can run server-side and still yield identical keys.
"""

from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import ColumnElement, func, literal_column

from app.core.logging import get_logger

logger = get_logger(__name__)


class TimeGranularity(str, Enum):
    """Bucket width for time-series queries."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def resolve_granularity(value: "TimeGranularity | str") -> TimeGranularity:
    """Coerce ``value`` to a granularity.

    Unknown values fall back to DAY instead of failing. Callers such as stored
    report definitions rely on this, so it is kept even though the HTTP layer
    only accepts the four known values.
    """
    if isinstance(value, TimeGranularity):
        return value
    try:
        return TimeGranularity(value)
    except ValueError:
        logger.warning("bucketing.unknown_granularity", granularity=value, fallback="day")
        return TimeGranularity.DAY


def to_utc(timestamp: datetime) -> datetime:
    """Normalise to aware UTC; naive timestamps are taken to be UTC already."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC)


def bucket_key(timestamp: datetime, granularity: "TimeGranularity | str") -> str:
    """Map a timestamp to the key of the bucket containing it.

    Args:
        timestamp: Observation instant.
        granularity: Bucket width; unknown values bucket by day.

    Returns:
        Canonical bucket key string.
    """
    ts = to_utc(timestamp)
    day = ts.date()
    resolved = resolve_granularity(granularity)

    if resolved is TimeGranularity.HOUR:
        return f"{day.isoformat()}T{ts.hour:02d}:00:00"
    if resolved is TimeGranularity.WEEK:
        # isoweekday: Monday=1. Stepping back to Monday keeps the ISO week-year.
        monday = day - timedelta(days=day.isoweekday() - 1)
        return monday.isoformat()
    if resolved is TimeGranularity.MONTH:
        return f"{day.year:04d}-{day.month:02d}-01"
    return day.isoformat()


def _sql_text(value: str) -> ColumnElement[Any]:
    # Inline constant: bound parameters would make the SELECT and GROUP BY
    # copies of the expression differ in PostgreSQL's eyes.
    return literal_column("'" + value.replace("'", "''") + "'")


def bucket_expression(
    column: Any,
    granularity: "TimeGranularity | str",
) -> ColumnElement[str]:
    """PostgreSQL expression producing ``bucket_key`` for a timestamptz column.

    Args:
        column: Timestamp column (``timestamp with time zone``).
        granularity: Bucket width; unknown values bucket by day.

    Returns:
        SQL expression yielding the bucket key as text.
    """
    utc = func.timezone(_sql_text("UTC"), column)
    resolved = resolve_granularity(granularity)

    if resolved is TimeGranularity.HOUR:
        return func.to_char(
            func.date_trunc(_sql_text("hour"), utc), _sql_text('YYYY-MM-DD"T"HH24:00:00')
        )
    if resolved is TimeGranularity.WEEK:
        # date_trunc('week') truncates to the ISO Monday
        return func.to_char(func.date_trunc(_sql_text("week"), utc), _sql_text("YYYY-MM-DD"))
    if resolved is TimeGranularity.MONTH:
        return func.to_char(utc, _sql_text("YYYY-MM-01"))
    return func.to_char(utc, _sql_text("YYYY-MM-DD"))


def day_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    """Expand calendar dates to an inclusive UTC instant range.

    The range starts at 00:00:00 of ``start_date`` and ends at the last
    representable instant of ``end_date``, whatever time of day the caller had
    in mind.
    """
    start = datetime.combine(start_date, time.min, tzinfo=UTC)
    end = datetime.combine(end_date, time.max, tzinfo=UTC)
    return start, end


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    """Yield every calendar day from ``start_date`` through ``end_date``."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
