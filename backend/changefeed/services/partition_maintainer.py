"""Hourly partition maintenance for the change feed.

Keeps a partition boundary in place for the current hour and a configurable
number of hours ahead, so writers never reach unpartitioned time. Every
boundary is checked and created in its own transaction: a failure leaves
earlier boundaries committed, and a rerun skips whatever already exists.
"""

import logging
from datetime import datetime, timedelta

from changefeed.config import settings
from changefeed.repositories.base import ChangeStore
from changefeed.utils.partitions import PARTITION_INTERVAL, floor_to_hour, to_utc, utc_now

logger = logging.getLogger(__name__)


async def ensure_boundary(store: ChangeStore, boundary: datetime) -> bool:
    """Create a partition boundary unless it already exists.

    Args:
        store: Change store to maintain.
        boundary: Exact boundary instant.

    Returns:
        True if the boundary was created, False if it already existed.
    """
    boundary = to_utc(boundary)
    async with store.transaction() as tx:
        await tx.lock_catalog()
        existing = await tx.list_partition_boundaries(
            start=boundary,
            end=boundary + timedelta(microseconds=1),
        )
        if existing:
            logger.debug("Partition boundary %s already exists", boundary.isoformat())
            return False
        await tx.split_partition(boundary)

    logger.info("Created partition boundary %s", boundary.isoformat())
    return True


async def ensure_future_partitions(
    store: ChangeStore,
    count_ahead: int | None = None,
    *,
    now: datetime | None = None,
) -> list[datetime]:
    """Ensure partitions exist for the current hour and the next hours.

    Stops at the first failing boundary and re-raises its error.

    Args:
        store: Change store to maintain.
        count_ahead: Hours beyond the current one, defaults to
            ``settings.partition_lookahead_hours``.
        now: Current time, defaults to the UTC clock.

    Returns:
        Boundaries created by this call, ascending.

    Raises:
        ValueError: If count_ahead is negative.
    """
    if count_ahead is None:
        count_ahead = settings.partition_lookahead_hours
    if count_ahead < 0:
        raise ValueError("count_ahead cannot be negative")

    first = floor_to_hour(now if now is not None else utc_now())
    created: list[datetime] = []

    for offset in range(count_ahead + 1):
        boundary = first + offset * PARTITION_INTERVAL
        try:
            if await ensure_boundary(store, boundary):
                created.append(boundary)
        except Exception:
            logger.exception(
                "Partition maintenance stopped at %s after creating %d boundaries",
                boundary.isoformat(),
                len(created),
            )
            raise

    logger.info(
        "Partition maintenance from %s (+%d hours): %d boundaries created",
        first.isoformat(),
        count_ahead,
        len(created),
    )
    return created
