"""Change feed pager.

Returns the next page of resource changes in strictly increasing id order,
starting from a consumer-held checkpoint. The pager keeps no state between
calls; consumers resume with ``max(id) + 1`` and their last processed time.

Ids and timestamps are correlated because rows are appended in time order,
so the scan is narrowed to partitions from just before the checkpoint hour
up to one hour past now. Each partition probe is capped at ``page_size``
before the merged result is sorted and truncated, which bounds per-partition
work even if a later partition still holds low ids.

Only partitions that start at a boundary are probed. Rows in the DEFAULT
partition, which holds everything older than the first boundary (e.g. rows
written before partition maintenance first ran), are never returned.

Before probing, the window's partitions are locked against new writes and
in-flight writers are waited for, so a page never skips a lower id that was
still uncommitted when a higher one became visible.
"""

import logging
from datetime import datetime, timedelta

from changefeed.config import settings
from changefeed.repositories.base import ChangeRecord, ChangeStore, ChangeStoreTransaction
from changefeed.utils.partitions import (
    EPOCH,
    PARTITION_INTERVAL,
    floor_to_hour,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 32767
MIN_ID = -(2**63)
MAX_ID = 2**63 - 1

# Covers partitions the maintainer created early and writer clock skew
SCAN_WINDOW_PAD = timedelta(hours=1)


async def get_scan_window(
    tx: ChangeStoreTransaction,
    last_processed: datetime | None,
    now: datetime,
) -> list[datetime]:
    """Resolve the partition boundaries a page fetch has to probe.

    The window starts at the boundary preceding the checkpoint's hour, since
    a checkpoint can point into a partition that has not been fully drained.
    Without such a boundary the window starts one hour before the checkpoint
    hour; this assumes partitions are hourly and contiguous.

    Args:
        tx: Open store transaction.
        last_processed: Consumer checkpoint time, None for the epoch.
        now: Current time.

    Returns:
        Boundaries in ``[preceding, now + 1 hour)``, ascending.
    """
    checkpoint_hour = floor_to_hour(last_processed if last_processed is not None else EPOCH)

    preceding = await tx.get_preceding_boundary(checkpoint_hour)
    if preceding is None:
        preceding = checkpoint_hour - PARTITION_INTERVAL

    window = await tx.list_partition_boundaries(
        start=floor_to_hour(preceding),
        end=to_utc(now) + SCAN_WINDOW_PAD,
    )
    logger.debug(
        "Change feed window from %s: %d partitions",
        floor_to_hour(preceding).isoformat(),
        len(window),
    )
    return window


async def fetch_page(
    store: ChangeStore,
    start_id: int,
    last_processed: datetime | None = None,
    page_size: int | None = None,
    *,
    now: datetime | None = None,
) -> list[ChangeRecord]:
    """Fetch the next page of resource changes.

    Args:
        store: Change store to read from.
        start_id: Smallest id to return (inclusive).
        last_processed: Checkpoint time of the consumer; None means the epoch.
        page_size: Maximum number of records, defaults to
            ``settings.change_feed_page_size``.
        now: Current time, defaults to the UTC clock.

    Returns:
        Up to ``page_size`` records with ``id >= start_id``, ordered by id.
        A short page means the feed is drained up to now.

    Raises:
        ValueError: If page_size or start_id is out of range.
    """
    if page_size is None:
        page_size = settings.change_feed_page_size
    if not 0 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be between 0 and {MAX_PAGE_SIZE}")
    if not MIN_ID <= start_id <= MAX_ID:
        raise ValueError("start_id must be a 64-bit integer")
    if page_size == 0:
        return []

    now = now if now is not None else utc_now()

    rows: list[ChangeRecord] = []
    async with store.transaction(repeatable_read=True) as tx:
        window = await get_scan_window(tx, last_processed, now)
        await tx.lock_partitions(window)
        for boundary in window:
            rows.extend(await tx.scan_partition(boundary, start_id, page_size))

    rows.sort(key=lambda row: row.id)
    page = rows[:page_size]

    logger.info(
        "Fetched %d resource changes from id %d across %d partitions",
        len(page),
        start_id,
        len(window),
    )
    return page
