"""Reports module: stored report definitions fed by the aggregation engine."""

from app.features.reports.models import Report, ReportFormat, ReportSchedule, ReportStatus
from app.features.reports.routes import router
from app.features.reports.service import ReportService

__all__ = [
    "Report",
    "ReportFormat",
    "ReportSchedule",
    "ReportService",
    "ReportStatus",
    "router",
]
