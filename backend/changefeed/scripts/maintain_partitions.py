"""Create hourly change feed partitions ahead of writers.

Intended to run from a scheduler (cron, Kubernetes CronJob) more often than
the look-ahead window, so writers never reach unpartitioned time.

Usage:
    python -m changefeed.scripts.maintain_partitions
    python -m changefeed.scripts.maintain_partitions --hours-ahead 72

The script is idempotent - boundaries that already exist are skipped, and a
rerun after a failure resumes at the failed boundary.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from changefeed.config import settings
from changefeed.database import async_session_maker, engine
from changefeed.repositories.resource_change import SqlChangeStore
from changefeed.services.partition_maintainer import ensure_future_partitions


async def verify_connection() -> bool:
    """Verify the PostgreSQL connection is working."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        print("  PostgreSQL: connected")
    except (OSError, SQLAlchemyError) as e:
        print(f"  PostgreSQL: FAILED - {e}")
        return False
    return True


async def maintain_partitions(hours_ahead: int) -> list[datetime]:
    """Run partition maintenance against the configured database.

    Args:
        hours_ahead: Hourly partitions to keep beyond the current hour.

    Returns:
        Boundaries created by this run.
    """
    try:
        if not await verify_connection():
            raise RuntimeError("Database connection verification failed")
        store = SqlChangeStore(async_session_maker)
        return await ensure_future_partitions(store, hours_ahead)
    finally:
        await engine.dispose()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create hourly resource change partitions ahead of writers.",
    )
    parser.add_argument(
        "--hours-ahead",
        type=int,
        default=settings.partition_lookahead_hours,
        help=f"Partitions to create beyond the current hour (default: {settings.partition_lookahead_hours})",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the maintenance script."""
    args = parse_args(argv)
    if args.hours_ahead < 0:
        print("--hours-ahead cannot be negative")
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 50)
    print("Resource Change Partition Maintenance")
    print("=" * 50)

    try:
        created = asyncio.run(maintain_partitions(args.hours_ahead))
    except (RuntimeError, SQLAlchemyError) as e:
        print(f"\nPartition maintenance failed: {e}")
        return 1

    print(f"\n  Hours ahead: {args.hours_ahead}")
    print(f"  Boundaries created: {len(created)}")
    for boundary in created:
        print(f"    {boundary.isoformat()}")
    print("\nPartition maintenance complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
