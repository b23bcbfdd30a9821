"""Tests for the report service."""

from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.core.cache import NullCache
from app.core.config import Settings
from app.core.exceptions import ConflictError, NotFoundError, StoreError
from app.features.analytics.service import AggregationService
from app.features.metrics.bucketing import TimeGranularity
from app.features.metrics.registry import build_default_registry
from app.features.metrics.store import GroupedValue
from app.features.reports.models import ReportFormat, ReportSchedule, ReportStatus
from app.features.reports.schemas import ReportCreate
from app.features.reports.service import ReportService
from app.shared.schemas import PaginationParams


@pytest.fixture
def service() -> ReportService:
    return ReportService()


# =============================================================================
# Create / read
# =============================================================================


@pytest.mark.asyncio
async def test_create_report_starts_pending(service, mock_db):
    data = ReportCreate(
        title="Weekly revenue",
        metrics=["revenue", "sessions"],
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 7),
        schedule=ReportSchedule.WEEKLY,
        recipients=["ops@example.com"],
    )

    response = await service.create_report(mock_db, data, created_by="user-1")

    assert response.status is ReportStatus.PENDING
    assert len(response.report_id) == 32
    assert response.created_by == "user-1"
    assert response.cron_expression == "0 6 * * 1"
    assert response.format is ReportFormat.PDF
    assert response.generation_count == 0
    mock_db.add.assert_called_once()
    mock_db.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_create_one_off_report_has_no_cron(service, mock_db):
    data = ReportCreate(
        title="Q1",
        metrics=["revenue"],
        start_date=date(2025, 1, 1),
        end_date=date(2025, 3, 31),
    )

    response = await service.create_report(mock_db, data, created_by="user-1")

    assert response.schedule is ReportSchedule.ONCE
    assert response.cron_expression is None


@pytest.mark.asyncio
async def test_get_report_not_found(service, mock_db):
    mock_db.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(NotFoundError):
        await service.get_report(mock_db, "missing")


@pytest.mark.asyncio
async def test_list_reports_paginates_newest_first(service, mock_db, report_factory):
    count_result = MagicMock()
    count_result.scalar_one.return_value = 3
    page_result = MagicMock()
    page_result.scalars.return_value.all.return_value = [report_factory()]
    mock_db.execute.side_effect = [count_result, page_result]

    response = await service.list_reports(
        mock_db, created_by="user-1", pagination=PaginationParams(page=2, page_size=2)
    )

    assert (response.total, response.page, response.page_size, response.pages) == (3, 2, 2, 2)
    page_stmt = mock_db.execute.await_args_list[1].args[0]
    sql = str(page_stmt.compile(dialect=postgresql.dialect()))
    assert "ORDER BY report.created_at DESC" in sql
    assert "report.created_by = " in sql


# =============================================================================
# Generation
# =============================================================================


@pytest.mark.asyncio
async def test_generate_report_completes(service, mock_db, stored_report, mock_aggregation):
    report = stored_report()

    data = await service.generate_report(mock_db, report.report_id, mock_aggregation)

    assert data.status is ReportStatus.COMPLETED
    assert data.rows[1] == {"date": "2025-01-02", "revenue": 200.0, "sessions": 0.0}
    assert report.status == ReportStatus.COMPLETED.value
    assert report.generation_count == 1
    assert report.last_generated_at is not None

    mock_aggregation.get_time_series.assert_awaited_once_with(
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 2),
        granularity="day",
        metrics=["revenue", "sessions"],
        source=None,
    )
    mock_aggregation.get_kpis.assert_awaited_once_with(
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 2),
    )


@pytest.mark.asyncio
async def test_regeneration_increments_count(service, mock_db, stored_report, mock_aggregation):
    report = stored_report(status=ReportStatus.COMPLETED.value, generation_count=4)

    await service.generate_report(mock_db, report.report_id, mock_aggregation)

    assert report.generation_count == 5


@pytest.mark.asyncio
async def test_generate_report_marks_failure(service, mock_db, stored_report, mock_aggregation):
    report = stored_report()
    mock_aggregation.get_time_series.side_effect = StoreError("Metric store query failed")

    with pytest.raises(StoreError):
        await service.generate_report(mock_db, report.report_id, mock_aggregation)

    assert report.status == ReportStatus.FAILED.value
    assert report.error_message == "Metric store query failed"
    assert report.error_occurred_at is not None
    assert report.generation_count == 0
    mock_db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_generate_report_rejects_processing(
    service, mock_db, stored_report, mock_aggregation
):
    report = stored_report(status=ReportStatus.PROCESSING.value)

    with pytest.raises(ConflictError) as exc_info:
        await service.generate_report(mock_db, report.report_id, mock_aggregation)

    assert exc_info.value.code == "INVALID_TRANSITION"
    mock_aggregation.get_time_series.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_report_can_be_retried(service, mock_db, stored_report, mock_aggregation):
    report = stored_report(status=ReportStatus.FAILED.value, error_message="boom")

    await service.generate_report(mock_db, report.report_id, mock_aggregation)

    assert report.status == ReportStatus.COMPLETED.value
    assert report.error_message is None


@pytest.mark.asyncio
async def test_generate_report_with_legacy_granularity_buckets_by_day(
    service, mock_db, stored_report
):
    report = stored_report(granularity="fortnight")
    store = MagicMock()
    store.query_grouped = AsyncMock(
        return_value=[
            GroupedValue("2025-01-01", "revenue", 100.0),
            GroupedValue("2025-01-02", "revenue", 200.0),
        ]
    )
    store.query_window_aggregate = AsyncMock(return_value={})
    store.query_daily_trend = AsyncMock(return_value={})
    aggregation = AggregationService(
        store=store,
        cache=NullCache(),
        registry=build_default_registry(),
        settings=Settings(),
    )

    data = await service.generate_report(mock_db, report.report_id, aggregation)

    assert data.status is ReportStatus.COMPLETED
    assert data.rows == [
        {"date": "2025-01-01", "revenue": 100.0, "sessions": 0.0},
        {"date": "2025-01-02", "revenue": 200.0, "sessions": 0.0},
    ]
    assert store.query_grouped.await_args.args[3] is TimeGranularity.DAY


# =============================================================================
# Export / scheduling
# =============================================================================


@pytest.mark.asyncio
async def test_export_url_for_completed_report(service, mock_db, stored_report):
    stored_report(
        status=ReportStatus.COMPLETED.value,
        download_url="https://files.example.com/r/a.pdf",
    )

    assert await service.export_url(mock_db, "a" * 32) == "https://files.example.com/r/a.pdf"


@pytest.mark.asyncio
async def test_export_url_not_ready(service, mock_db, stored_report):
    stored_report(status=ReportStatus.PENDING.value)

    with pytest.raises(ConflictError) as exc_info:
        await service.export_url(mock_db, "a" * 32)

    assert exc_info.value.code == "REPORT_NOT_READY"
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_list_due_scheduled_filters_state_and_interval(service, mock_db, report_factory):
    result = MagicMock()
    result.scalars.return_value.all.return_value = [report_factory()]
    mock_db.execute.return_value = result

    due = await service.list_due_scheduled(mock_db, now=datetime(2025, 2, 1, tzinfo=UTC))

    assert [report.report_id for report in due] == ["a" * 32]
    stmt = mock_db.execute.await_args.args[0]
    sql = str(stmt.compile(dialect=postgresql.dialect()))
    assert "report.status IN " in sql
    assert "report.last_generated_at IS NULL" in sql
