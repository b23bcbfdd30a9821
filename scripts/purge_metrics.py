#!/usr/bin/env python
"""Delete metric observations older than the retention horizon.

Usage:
    uv run python scripts/purge_metrics.py
    uv run python scripts/purge_metrics.py --days 365
"""

import argparse
import asyncio
import sys
from datetime import UTC, datetime, timedelta

from app.core.config import get_settings
from app.core.database import dispose_engine, get_session_maker
from app.core.exceptions import StoreError
from app.core.logging import configure_logging
from app.features.metrics.store import SQLMetricStore


async def purge(days: int) -> int:
    """Purge observations older than ``days`` days."""
    configure_logging()
    cutoff = datetime.now(UTC) - timedelta(days=days)
    store = SQLMetricStore(get_session_maker())

    try:
        deleted = await store.purge_expired(cutoff)
    except StoreError as e:
        print(f"[FAIL] Purge failed: {e.message}")
        return 1
    finally:
        await dispose_engine()

    print(f"[OK] Deleted {deleted} observations older than {cutoff.date().isoformat()}")
    return 0


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--days",
        type=int,
        default=get_settings().metric_retention_days,
        help="Retention horizon in days (default: METRIC_RETENTION_DAYS)",
    )
    args = parser.parse_args()
    if args.days < 1:
        parser.error("--days must be >= 1")
    sys.exit(asyncio.run(purge(args.days)))


if __name__ == "__main__":
    main()
