"""Metric observation ORM model.

Observations are immutable facts appended by the ingestion path: a metric
name, a numeric value, the instant it was observed, a source tag, and an open
metadata map. Rows are never updated; they are only removed by the retention
purge once they fall outside the retention horizon.
"""

import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Double,
    Index,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

# Registered metric identifiers; order matches the KPI registry.
METRIC_NAMES: tuple[str, ...] = (
    "revenue",
    "sessions",
    "conversions",
    "bounce_rate",
    "avg_session_duration",
    "active_users",
    "page_views",
    "new_users",
)

DEFAULT_SOURCE = "default"


class Metric(Base):
    """Single metric observation.

    Attributes:
        id: Surrogate primary key.
        name: One of METRIC_NAMES.
        value: Observed value.
        timestamp: Observation instant (timezone-aware, indexed for range scans).
        source: Originating system/channel tag.
        attributes: Free-form metadata (stored in the ``metadata`` column).
        created_at: Ingestion time.
    """

    __tablename__ = "metric"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), index=True)
    value: Mapped[float] = mapped_column(Double)
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True)
    source: Mapped[str] = mapped_column(
        String(100),
        default=DEFAULT_SOURCE,
        server_default=DEFAULT_SOURCE,
        index=True,
    )
    # "metadata" is reserved on declarative classes
    attributes: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        default=dict,
        server_default="{}",
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "name IN (" + ", ".join(f"'{name}'" for name in METRIC_NAMES) + ")",
            name="ck_metric_registered_name",
        ),
        Index("ix_metric_name_timestamp", "name", "timestamp"),
        Index("ix_metric_name_source_timestamp", "name", "source", "timestamp"),
    )
