"""In-memory change store.

Keeps partition boundaries and change rows in process memory. Used for tests
and local runs where no PostgreSQL instance is available. All transactions
and appends are serialized through one lock, which trivially gives readers
the repeatable-read guarantee of the ``ChangeStore`` contract.
"""

from __future__ import annotations

import asyncio
import bisect
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime

from changefeed.models.resource_change import ResourceChangeType
from changefeed.repositories.base import ChangeRecord
from changefeed.utils.partitions import to_utc, utc_now


class InMemoryTransaction:
    """Transaction handle over an ``InMemoryChangeStore``."""

    def __init__(self, store: InMemoryChangeStore):
        self._store = store

    async def lock_catalog(self) -> None:
        # Transactions already hold the store lock
        return None

    async def list_partition_boundaries(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[datetime]:
        boundaries = self._store._boundaries
        lo = 0 if start is None else bisect.bisect_left(boundaries, to_utc(start))
        hi = len(boundaries) if end is None else bisect.bisect_left(boundaries, to_utc(end))
        return boundaries[lo:hi]

    async def get_preceding_boundary(self, before: datetime) -> datetime | None:
        boundaries = self._store._boundaries
        index = bisect.bisect_left(boundaries, to_utc(before))
        return boundaries[index - 1] if index > 0 else None

    async def lock_partitions(self, boundaries: list[datetime]) -> None:
        # Appends already wait on the store lock
        return None

    async def scan_partition(
        self,
        boundary: datetime,
        start_id: int,
        limit: int,
    ) -> list[ChangeRecord]:
        boundaries = self._store._boundaries
        boundary = to_utc(boundary)
        index = bisect.bisect_left(boundaries, boundary)
        if index == len(boundaries) or boundaries[index] != boundary:
            return []
        upper = boundaries[index + 1] if index + 1 < len(boundaries) else None

        matches = [
            row
            for row in self._store._rows
            if row.id >= start_id
            and row.timestamp >= boundary
            and (upper is None or row.timestamp < upper)
        ]
        matches.sort(key=lambda row: row.id)
        return matches[:limit]

    async def split_partition(self, at: datetime) -> None:
        at = to_utc(at)
        boundaries = self._store._boundaries
        index = bisect.bisect_left(boundaries, at)
        if index < len(boundaries) and boundaries[index] == at:
            raise ValueError(f"Partition boundary {at.isoformat()} already exists")
        boundaries.insert(index, at)


class InMemoryChangeStore:
    """Range-partitioned change log held in memory."""

    def __init__(self, boundaries: Iterable[datetime] = ()):
        self._boundaries: list[datetime] = sorted({to_utc(b) for b in boundaries})
        self._rows: list[ChangeRecord] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    @property
    def boundaries(self) -> list[datetime]:
        """Snapshot of the current partition boundaries."""
        return list(self._boundaries)

    @property
    def rows(self) -> list[ChangeRecord]:
        """Snapshot of all stored change rows in insertion order."""
        return list(self._rows)

    async def append(
        self,
        resource_id: str,
        resource_type_id: int,
        resource_version: int = 1,
        change_type: ResourceChangeType = ResourceChangeType.CREATED,
        timestamp: datetime | None = None,
    ) -> ChangeRecord:
        """Record a resource mutation, assigning the next id.

        Waits for any open transaction to finish first.
        """
        async with self._lock:
            record = ChangeRecord(
                id=self._next_id,
                timestamp=to_utc(timestamp) if timestamp is not None else utc_now(),
                resource_id=resource_id,
                resource_type_id=resource_type_id,
                resource_version=resource_version,
                resource_change_type_id=int(change_type),
            )
            self._next_id += 1
            self._rows.append(record)
            return record

    async def insert(self, record: ChangeRecord) -> None:
        """Store a record with a caller-chosen id, e.g. to model out-of-order commits."""
        async with self._lock:
            self._rows.append(replace(record, timestamp=to_utc(record.timestamp)))
            self._next_id = max(self._next_id, record.id + 1)

    @asynccontextmanager
    async def transaction(
        self, *, repeatable_read: bool = False
    ) -> AsyncIterator[InMemoryTransaction]:
        async with self._lock:
            saved_boundaries = list(self._boundaries)
            try:
                yield InMemoryTransaction(self)
            except BaseException:
                self._boundaries[:] = saved_boundaries
                raise
