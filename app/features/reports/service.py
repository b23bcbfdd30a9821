"""Report definition service.

Stores report definitions and drives generation runs through the aggregation
engine. Rendering (PDF/CSV) and delivery happen downstream; this service only
produces the data and records the outcome.

CRITICAL: All status transitions are validated.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import ConflictError, NotFoundError, StoreError
from app.features.analytics.service import AggregationService
from app.features.reports.models import (
    VALID_REPORT_TRANSITIONS,
    Report,
    ReportSchedule,
    ReportStatus,
    cron_for_schedule,
)
from app.features.reports.schemas import (
    ReportCreate,
    ReportDataResponse,
    ReportListResponse,
    ReportResponse,
)
from app.shared.schemas import PaginationParams

logger = structlog.get_logger()

# Minimum gap between two runs of a recurring report
SCHEDULE_INTERVAL: dict[ReportSchedule, timedelta] = {
    ReportSchedule.DAILY: timedelta(days=1),
    ReportSchedule.WEEKLY: timedelta(weeks=1),
    ReportSchedule.MONTHLY: timedelta(days=28),
}


class ReportService:
    """Service for report definitions and their generation lifecycle."""

    def __init__(self) -> None:
        self.settings = get_settings()

    # =========================================================================
    # Transitions
    # =========================================================================

    def _validate_transition(self, report: Report, new_status: ReportStatus) -> None:
        """Validate a status transition.

        Raises:
            ConflictError: If the report cannot move to ``new_status``.
        """
        current = ReportStatus(report.status)
        if new_status not in VALID_REPORT_TRANSITIONS.get(current, set()):
            raise ConflictError(
                f"Cannot move report {report.report_id} from {current.value} "
                f"to {new_status.value}",
                code="INVALID_TRANSITION",
                details={
                    "report_id": report.report_id,
                    "current_status": current.value,
                    "requested_status": new_status.value,
                },
            )

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_report(
        self,
        db: AsyncSession,
        data: ReportCreate,
        created_by: str,
    ) -> ReportResponse:
        """Persist a new report definition in PENDING status.

        Args:
            db: Database session.
            data: Validated report definition.
            created_by: Requesting user id.

        Returns:
            The stored report.
        """
        report = Report(
            report_id=uuid.uuid4().hex,
            title=data.title,
            description=data.description,
            metrics=list(data.metrics),
            start_date=data.start_date,
            end_date=data.end_date,
            granularity=data.granularity.value,
            source=data.source or None,
            format=data.format.value,
            schedule=data.schedule.value,
            cron_expression=cron_for_schedule(data.schedule),
            status=ReportStatus.PENDING.value,
            created_by=created_by,
            generation_count=0,
            recipients=list(data.recipients),
        )

        db.add(report)
        await db.flush()
        await db.refresh(report)

        logger.info(
            "reports.report_created",
            report_id=report.report_id,
            created_by=created_by,
            metrics=report.metrics,
            schedule=report.schedule,
        )

        return ReportResponse.model_validate(report)

    async def list_reports(
        self,
        db: AsyncSession,
        created_by: str,
        pagination: PaginationParams,
    ) -> ReportListResponse:
        """List a user's reports, newest first."""
        stmt = select(Report).where(Report.created_by == created_by)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await db.execute(count_stmt)).scalar_one()

        stmt = (
            stmt.order_by(Report.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        reports = (await db.execute(stmt)).scalars().all()

        return ReportListResponse(
            reports=[ReportResponse.model_validate(report) for report in reports],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            pages=pagination.page_count(total),
        )

    async def _load(self, db: AsyncSession, report_id: str) -> Report:
        result = await db.execute(select(Report).where(Report.report_id == report_id))
        report = result.scalar_one_or_none()
        if report is None:
            raise NotFoundError(
                f"Report not found: {report_id}",
                details={"report_id": report_id},
            )
        return report

    async def get_report(self, db: AsyncSession, report_id: str) -> ReportResponse:
        """Get a report by id.

        Raises:
            NotFoundError: If no report has this id.
        """
        return ReportResponse.model_validate(await self._load(db, report_id))

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_report(
        self,
        db: AsyncSession,
        report_id: str,
        aggregation: AggregationService,
    ) -> ReportDataResponse:
        """Run the aggregation engine for a report and record the outcome.

        The report moves to PROCESSING, then to COMPLETED with the produced
        rows and KPIs, or to FAILED when the metric store is unavailable.

        Args:
            db: Database session.
            report_id: Report to generate.
            aggregation: Aggregation engine to query.

        Returns:
            Time-series rows and KPIs for the report's parameters.

        Raises:
            NotFoundError: If the report does not exist.
            ConflictError: If the report is already processing.
            StoreError: If the metric store fails; the report is marked FAILED.
        """
        report = await self._load(db, report_id)
        self._validate_transition(report, ReportStatus.PROCESSING)

        report.status = ReportStatus.PROCESSING.value
        await db.flush()

        logger.info("reports.generation_started", report_id=report_id)

        params = report.to_parameters()
        try:
            rows = await aggregation.get_time_series(
                start_date=params["start_date"],
                end_date=params["end_date"],
                granularity=params["granularity"],
                metrics=params["metrics"],
                source=params["source"],
            )
            kpis = await aggregation.get_kpis(
                start_date=params["start_date"],
                end_date=params["end_date"],
            )
        except StoreError as e:
            report.status = ReportStatus.FAILED.value
            report.error_message = e.message
            report.error_occurred_at = datetime.now(UTC)
            # Commit so the FAILED outcome survives the request rollback
            await db.commit()
            logger.error(
                "reports.generation_failed",
                report_id=report_id,
                error=e.message,
                error_code=e.code,
            )
            raise

        report.status = ReportStatus.COMPLETED.value
        report.error_message = None
        report.error_occurred_at = None
        report.last_generated_at = datetime.now(UTC)
        report.generation_count = (report.generation_count or 0) + 1
        await db.flush()

        logger.info(
            "reports.generation_completed",
            report_id=report_id,
            rows=len(rows),
            generation_count=report.generation_count,
        )

        return ReportDataResponse(
            report_id=report.report_id,
            status=ReportStatus.COMPLETED,
            rows=rows,
            kpis=kpis,
        )

    async def list_due_scheduled(
        self,
        db: AsyncSession,
        now: datetime | None = None,
    ) -> list[ReportResponse]:
        """Recurring reports whose interval has elapsed since their last run.

        Only pending and completed reports are returned; failed ones wait for
        an explicit regeneration.
        """
        now = now or datetime.now(UTC)

        due_conditions = [
            and_(
                Report.schedule == schedule.value,
                or_(
                    Report.last_generated_at.is_(None),
                    Report.last_generated_at <= now - interval,
                ),
            )
            for schedule, interval in SCHEDULE_INTERVAL.items()
        ]
        stmt = (
            select(Report)
            .where(
                Report.status.in_([ReportStatus.PENDING.value, ReportStatus.COMPLETED.value])
            )
            .where(or_(*due_conditions))
            .order_by(Report.last_generated_at.asc().nulls_first())
        )
        reports = (await db.execute(stmt)).scalars().all()

        logger.info("reports.due_scheduled_listed", count=len(reports))

        return [ReportResponse.model_validate(report) for report in reports]

    async def export_url(self, db: AsyncSession, report_id: str) -> str:
        """Download location of a completed report.

        Raises:
            NotFoundError: If the report does not exist.
            ConflictError: If the report has no rendered artifact yet.
        """
        report = await self._load(db, report_id)
        if report.status != ReportStatus.COMPLETED.value or not report.download_url:
            raise ConflictError(
                f"Report {report_id} is not ready for export",
                code="REPORT_NOT_READY",
                details={"report_id": report_id, "status": report.status},
            )
        return report.download_url

