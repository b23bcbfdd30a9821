"""Core infrastructure: config, database, cache, logging, middleware, exceptions."""

from app.core.cache import AnalyticsCache, get_cache
from app.core.config import Settings, get_settings
from app.core.database import Base, get_db
from app.core.logging import get_logger, request_id_ctx

__all__ = [
    "AnalyticsCache",
    "Base",
    "Settings",
    "get_cache",
    "get_db",
    "get_logger",
    "get_settings",
    "request_id_ctx",
]
