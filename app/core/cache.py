"""Best-effort cache-aside layer backed by Redis.

The cache is never a source of truth. ``RedisCache`` is the single seam where
backend and payload failures are swallowed: reads collapse to a miss, writes
collapse to a no-op. Callers see only hit (a value) or miss (``None``) and
behave identically, only slower, when Redis is down or caching is disabled.
"""

import json
from collections.abc import Callable
from functools import lru_cache
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ConstantBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.core.config import Settings, get_settings
from app.core.exceptions import CacheError
from app.core.logging import get_logger

logger = get_logger(__name__)

# Failures that the seam absorbs. pydantic's ValidationError is a ValueError,
# so a loader rejecting a stale payload shape is also treated as a miss.
_ABSORBED_ERRORS: tuple[type[BaseException], ...] = (
    CacheError,
    RedisError,
    OSError,
    ValueError,
    TypeError,
)


class AnalyticsCache(Protocol):
    """Cache contract consumed by the aggregation and KPI engines."""

    async def get(self, key: str, loader: Callable[[Any], Any] | None = None) -> Any | None:
        """Return the cached value for ``key`` or ``None`` on miss."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ...

    async def ping(self) -> bool | None:
        """Report whether the backend is reachable; None when caching is off."""
        ...

    async def close(self) -> None:
        """Release backend connections."""
        ...


def encode_payload(value: Any) -> str:
    """Serialize a cache payload to compact JSON.

    Raises:
        CacheError: If the value is not JSON serializable.
    """
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise CacheError("Cache payload is not JSON serializable", {"error": str(e)}) from e


def decode_payload(raw: str | bytes) -> Any:
    """Deserialize a cache payload.

    Raises:
        CacheError: If the stored bytes are not valid JSON.
    """
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CacheError("Cache payload is not valid JSON", {"error": str(e)}) from e


class RedisCache:
    """Redis-backed cache with JSON payloads and per-key TTL."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, key: str, loader: Callable[[Any], Any] | None = None) -> Any | None:
        """Look up ``key``.

        Args:
            key: Fully qualified cache key.
            loader: Optional converter applied to the decoded JSON (for
                example ``KPIResponse.model_validate``). It runs inside the
                seam, so a payload it rejects counts as a miss.

        Returns:
            The (converted) cached value, or None on miss or any failure.
        """
        try:
            raw = await self._client.get(key)
            if raw is None:
                logger.debug("cache.miss", key=key)
                return None
            payload = decode_payload(raw)
            value = loader(payload) if loader is not None else payload
        except _ABSORBED_ERRORS as e:
            logger.warning(
                "cache.get_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.debug("cache.hit", key=key)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` with ``SET key value EX ttl``; failures are no-ops."""
        try:
            await self._client.set(key, encode_payload(value), ex=ttl_seconds)
        except _ABSORBED_ERRORS as e:
            logger.warning(
                "cache.set_failed",
                key=key,
                ttl_seconds=ttl_seconds,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.debug("cache.stored", key=key, ttl_seconds=ttl_seconds)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except _ABSORBED_ERRORS as e:
            logger.warning("cache.ping_failed", error=str(e), error_type=type(e).__name__)
            return False

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except _ABSORBED_ERRORS as e:
            logger.warning("cache.close_failed", error=str(e), error_type=type(e).__name__)


class NullCache:
    """Cache used when caching is disabled: every read misses."""

    async def get(self, key: str, loader: Callable[[Any], Any] | None = None) -> Any | None:
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        return None

    async def ping(self) -> bool | None:
        return None

    async def close(self) -> None:
        return None


def create_cache(settings: Settings) -> AnalyticsCache:
    """Build the cache from settings.

    The Redis client connects lazily on first command, retries a fixed small
    number of times on connection errors and timeouts, and then gives up;
    ``RedisCache`` turns the final failure into a miss.

    Args:
        settings: Application settings.

    Returns:
        RedisCache when caching is enabled, otherwise NullCache.
    """
    if not settings.cache_enabled:
        logger.info("cache.disabled")
        return NullCache()

    client = Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.cache_socket_timeout_seconds,
        socket_connect_timeout=settings.cache_socket_timeout_seconds,
        retry=Retry(ConstantBackoff(0.1), settings.cache_retry_attempts),
        retry_on_error=[RedisConnectionError, RedisTimeoutError],
    )
    logger.info("cache.configured", retry_attempts=settings.cache_retry_attempts)
    return RedisCache(client)


@lru_cache
def get_cache() -> AnalyticsCache:
    """Get the process-wide cache instance."""
    return create_cache(get_settings())
