"""Test fixtures for reports module."""

from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.features.analytics.schemas import KPIPeriod, KPIResponse, PeriodRange
from app.features.reports.models import Report, ReportStatus

CREATED_AT = datetime(2025, 1, 20, 9, 0, tzinfo=UTC)


def make_report(**overrides) -> Report:
    """Build a persisted-looking Report without a database."""
    fields = {
        "id": 1,
        "report_id": "a" * 32,
        "title": "Weekly revenue",
        "description": "",
        "metrics": ["revenue", "sessions"],
        "start_date": date(2025, 1, 1),
        "end_date": date(2025, 1, 2),
        "granularity": "day",
        "source": None,
        "format": "pdf",
        "schedule": "weekly",
        "cron_expression": "0 6 * * 1",
        "status": ReportStatus.PENDING.value,
        "download_url": None,
        "file_size": None,
        "error_message": None,
        "error_occurred_at": None,
        "created_by": "user-1",
        "last_generated_at": None,
        "generation_count": 0,
        "recipients": ["ops@example.com"],
        "created_at": CREATED_AT,
        "updated_at": CREATED_AT,
    }
    fields.update(overrides)
    return Report(**fields)


def result_with(report: Report | None) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = report
    return result


@pytest.fixture
def mock_db() -> MagicMock:
    """AsyncSession stand-in; refresh fills server-side defaults."""
    db = MagicMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.execute = AsyncMock(return_value=MagicMock())

    async def refresh(instance):
        instance.id = 1
        instance.created_at = CREATED_AT
        instance.updated_at = CREATED_AT

    db.refresh = AsyncMock(side_effect=refresh)
    return db


@pytest.fixture
def kpi_response() -> KPIResponse:
    return KPIResponse(
        kpis=[],
        period=KPIPeriod(
            current=PeriodRange(start=date(2025, 1, 1), end=date(2025, 1, 2)),
            previous=PeriodRange(start=date(2024, 12, 30), end=date(2024, 12, 31)),
        ),
    )


@pytest.fixture
def mock_aggregation(kpi_response) -> MagicMock:
    aggregation = MagicMock()
    aggregation.registry = MagicMock()
    aggregation.get_time_series = AsyncMock(
        return_value=[
            {"date": "2025-01-01", "revenue": 100.0, "sessions": 10.0},
            {"date": "2025-01-02", "revenue": 200.0, "sessions": 0.0},
        ]
    )
    aggregation.get_kpis = AsyncMock(return_value=kpi_response)
    return aggregation


@pytest.fixture
def report_factory():
    """Factory for Report rows; keyword arguments override defaults."""
    return make_report


@pytest.fixture
def stored_report(mock_db, report_factory):
    """Make ``mock_db`` return the given report from the next lookup."""

    def store(**overrides) -> Report:
        report = report_factory(**overrides)
        mock_db.execute.return_value = result_with(report)
        return report

    return store
