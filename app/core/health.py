"""Health check endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import AnalyticsCache, get_cache
from app.core.database import get_db
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["ok", "degraded", "unhealthy"]
    database: Literal["connected", "disconnected"] | None = None
    cache: Literal["connected", "disconnected", "disabled"] | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check; touches no backing service."""
    logger.debug("health.check_started")
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    cache: AnalyticsCache = Depends(get_cache),
) -> HealthResponse:
    """Readiness check including database and cache connectivity.

    The cache is best-effort, so an unreachable cache reports ``degraded``
    rather than ``unhealthy``.

    Args:
        db: Database session dependency.
        cache: Analytics cache dependency.

    Returns:
        Health status with database and cache state.
    """
    logger.debug("health.readiness_check_started")

    cache_state = await cache.ping()
    cache_field: Literal["connected", "disconnected", "disabled"]
    if cache_state is None:
        cache_field = "disabled"
    else:
        cache_field = "connected" if cache_state else "disconnected"

    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(
            "health.database_disconnected",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return HealthResponse(status="unhealthy", database="disconnected", cache=cache_field)

    logger.info("health.database_connected", cache=cache_field)
    return HealthResponse(
        status="degraded" if cache_field == "disconnected" else "ok",
        database="connected",
        cache=cache_field,
    )
