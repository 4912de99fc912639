"""Storage contract for the time-partitioned change feed.

The pager and the partition maintainer only talk to a ``ChangeStore``; the
PostgreSQL and in-memory stores implement it. A store hands out transactions,
and every catalog lookup, partition probe and partition split happens inside
one of them.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class ChangeRecord:
    """A single resource mutation as read from the change feed."""

    id: int
    timestamp: datetime
    resource_id: str
    resource_type_id: int
    resource_version: int
    resource_change_type_id: int


class ChangeStoreTransaction(Protocol):
    """Operations available inside a store transaction."""

    async def lock_catalog(self) -> None:
        """Block other layout changes until this transaction ends."""
        ...

    async def list_partition_boundaries(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[datetime]:
        """Return partition boundaries with ``start <= b < end``, ascending.

        Either bound may be None to leave that side open.
        """
        ...

    async def get_preceding_boundary(self, before: datetime) -> datetime | None:
        """Return the greatest boundary strictly earlier than ``before``."""
        ...

    async def scan_partition(
        self,
        boundary: datetime,
        start_id: int,
        limit: int,
    ) -> list[ChangeRecord]:
        """Read rows of the partition starting at ``boundary``.

        Only rows with ``id >= start_id`` are returned, ordered by id and
        capped at ``limit``. A boundary that is not in the catalog names no
        partition and yields no rows.
        """
        ...

    async def lock_partitions(self, boundaries: list[datetime]) -> None:
        """Wait for in-flight writers to these partitions and hold off new ones.

        Called before the first scan of a repeatable-read transaction, so a
        row with a lower id that is still being written is never skipped in
        favour of a higher committed one. Unknown boundaries are ignored.
        """
        ...

    async def split_partition(self, at: datetime) -> None:
        """Split the partition holding ``at`` so that ``at`` becomes a boundary."""
        ...


class ChangeStore(Protocol):
    """A range-partitioned, append-only change log."""

    def transaction(
        self, *, repeatable_read: bool = False
    ) -> AbstractAsyncContextManager[ChangeStoreTransaction]:
        """Open a transaction that commits on success and rolls back on error.

        With ``repeatable_read`` set, every read sees the same data, and
        partitions passed to ``lock_partitions`` accept no new writes until
        the transaction ends.
        """
        ...
