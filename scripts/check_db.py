#!/usr/bin/env python
"""Check database and cache connectivity.

Usage:
    uv run python scripts/check_db.py
"""

import asyncio
import sys

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from app.core.cache import create_cache
from app.core.config import get_settings


async def check_database():
    """Verify database connection, metric table, and cache reachability."""
    settings = get_settings()

    print("DashAnalytics - Connectivity Check")
    print("=" * 45)
    print(f"Database URL: {settings.database_url.split('@')[1]}")  # Hide credentials
    print(f"Redis URL:    {settings.redis_url.split('@')[-1]}")
    print()

    engine = create_async_engine(settings.database_url)
    cache = create_cache(settings)

    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            if result.scalar() != 1:
                print("[FAIL] Unexpected response to SELECT 1")
                return 1
            print("[OK] Basic connectivity")

            result = await conn.execute(text("SELECT version()"))
            version = result.scalar()
            print(f"[OK] PostgreSQL version: {version[:50]}...")

            result = await conn.execute(text("SELECT to_regclass('public.metric')"))
            if result.scalar():
                count = (await conn.execute(text("SELECT count(*) FROM metric"))).scalar()
                print(f"[OK] metric table present ({count} rows)")
            else:
                print("[WARN] metric table missing")
                print("       Run: uv run alembic upgrade head")

        reachable = await cache.ping()
        if reachable is None:
            print("[INFO] Cache disabled (CACHE_ENABLED=false)")
        elif reachable:
            print("[OK] Redis reachable")
        else:
            print("[WARN] Redis unreachable - queries will bypass the cache")

        print()
        print("Connectivity check completed successfully!")
        return 0

    except (SQLAlchemyError, OSError) as e:
        print(f"[FAIL] Connection failed: {e}")
        print()
        print("Troubleshooting:")
        print("  1. Ensure Docker is running: docker-compose up -d")
        print("  2. Check DATABASE_URL in .env file")
        print("  3. Verify PostgreSQL container is healthy: docker-compose ps")
        return 1

    finally:
        await cache.close()
        await engine.dispose()


def main():
    sys.exit(asyncio.run(check_database()))


if __name__ == "__main__":
    main()
