"""Report API routes.

The upstream gateway authenticates callers and forwards the user id in the
``X-User-ID`` header.
"""

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db
from app.core.logging import get_logger
from app.features.analytics.deps import ensure_known_metrics, get_aggregation_service
from app.features.analytics.service import AggregationService
from app.features.reports.schemas import (
    ReportCreate,
    ReportDataResponse,
    ReportListResponse,
    ReportResponse,
)
from app.features.reports.service import ReportService
from app.shared.schemas import PaginationParams

logger = get_logger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


def get_user_id(x_user_id: str = Header("anonymous", max_length=64)) -> str:
    return x_user_id or "anonymous"


@router.post(
    "",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Define a report",
    description="""
Create a report definition in PENDING status.

**Required Fields:**
- `title`: 1-200 characters
- `metrics`: at least one metric name
- `start_date`, `end_date`: inclusive range, `end_date >= start_date`

**Optional Fields:**
- `granularity`: hour, day (default), week, month
- `source`: source tag filter
- `format`: pdf (default) or csv
- `schedule`: once (default), daily, weekly, monthly
- `recipients`: email addresses
""",
)
async def create_report(
    request: ReportCreate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_user_id),
    aggregation: AggregationService = Depends(get_aggregation_service),
) -> ReportResponse:
    """Create a report definition for the calling user."""
    ensure_known_metrics(request.metrics, aggregation.registry)

    response = await ReportService().create_report(db=db, data=request, created_by=user_id)

    logger.info(
        "reports.create_request_completed",
        report_id=response.report_id,
        user_id=user_id,
    )
    return response


@router.get(
    "",
    response_model=ReportListResponse,
    summary="List the caller's reports",
)
async def list_reports(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_user_id),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int | None = Query(
        None,
        ge=1,
        description="Reports per page; defaults and caps come from settings",
    ),
) -> ReportListResponse:
    """List reports created by the caller, newest first."""
    settings = get_settings()
    size = min(page_size or settings.reports_default_page_size, settings.reports_max_page_size)
    return await ReportService().list_reports(
        db=db,
        created_by=user_id,
        pagination=PaginationParams(page=page, page_size=size),
    )


@router.get(
    "/{report_id}",
    response_model=ReportResponse,
    summary="Get report details",
)
async def get_report(
    report_id: str,
    db: AsyncSession = Depends(get_db),
) -> ReportResponse:
    return await ReportService().get_report(db=db, report_id=report_id)


@router.post(
    "/{report_id}/generate",
    response_model=ReportDataResponse,
    summary="Generate report data",
    description="""
Run the aggregation engine with the report's parameters and return the
time-series rows plus the KPI summary for the renderer.

Returns 409 if the report is already processing and 503 if the metric store
is unavailable (the report is then marked failed).
""",
)
async def generate_report(
    report_id: str,
    db: AsyncSession = Depends(get_db),
    aggregation: AggregationService = Depends(get_aggregation_service),
) -> ReportDataResponse:
    """Generate data for one report run."""
    return await ReportService().generate_report(
        db=db,
        report_id=report_id,
        aggregation=aggregation,
    )


@router.get(
    "/{report_id}/export",
    status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    response_class=RedirectResponse,
    summary="Download the rendered report",
    responses={409: {"description": "Report has not been rendered yet"}},
)
async def export_report(
    report_id: str,
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    """Redirect to the rendered artifact."""
    url = await ReportService().export_url(db=db, report_id=report_id)
    return RedirectResponse(url=url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
