"""PostgreSQL change store.

Backs the change feed with PostgreSQL declarative range partitioning on
``resource_change_data.timestamp``. Partition boundaries are read from the
system catalog (``pg_inherits`` + ``pg_get_expr(relpartbound)``), so there is
no bookkeeping table that could drift from the physical layout.

Layout maintained by ``split_partition``:
    - ``resource_change_data_default``: DEFAULT partition, rows before the
      first boundary
    - ``resource_change_data_pYYYYMMDDHH``: ``[boundary, next boundary)``; the
      highest partition runs to ``MAXVALUE``

Repeatable-read transactions read the catalog on a separate session and then
take ``SHARE`` locks on the partitions they will scan before running any
query. The lock waits for inserters already writing to those partitions, so
the transaction snapshot, taken by the first scan, contains every id they
allocated. Inserts into other partitions are not blocked.
"""

from __future__ import annotations

import bisect
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from changefeed.config import settings
from changefeed.database import async_session_maker
from changefeed.models.resource_change import (
    DEFAULT_PARTITION,
    RESOURCE_CHANGE_TABLE,
    resource_change_data,
)
from changefeed.repositories.base import ChangeRecord
from changefeed.utils.partitions import partition_name, to_utc

logger = logging.getLogger(__name__)

# Arbitrary constant shared by every maintainer that edits the partition layout
CATALOG_LOCK_KEY = 0x52434443

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

_BOUNDARY_CATALOG = text(
    r"""
    SELECT bounds.partition_name, bounds.boundary
    FROM (
        SELECT
            c.relname AS partition_name,
            CAST(
                (regexp_match(
                    pg_catalog.pg_get_expr(c.relpartbound, c.oid),
                    'FROM \(''([^'']+)''\)'
                ))[1] AS timestamptz
            ) AS boundary
        FROM pg_catalog.pg_inherits i
        JOIN pg_catalog.pg_class c ON c.oid = i.inhrelid
        WHERE i.inhparent = CAST(:parent AS regclass)
    ) AS bounds
    WHERE bounds.boundary IS NOT NULL
    ORDER BY bounds.boundary
    """
)

_RECORD_COLUMNS = [c.name for c in resource_change_data.columns]


def _timestamp_literal(value: datetime) -> str:
    """Render a boundary for partition DDL, which does not accept bind parameters."""
    return f"'{to_utc(value).isoformat()}'"


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


async def read_boundary_catalog(session: AsyncSession) -> list[tuple[datetime, str]]:
    """Return ``(boundary, partition name)`` pairs, ascending by boundary."""
    result = await session.execute(_BOUNDARY_CATALOG, {"parent": RESOURCE_CHANGE_TABLE})
    return [(to_utc(row.boundary), row.partition_name) for row in result]


class SqlChangeTransaction:
    """Transaction handle bound to one ``AsyncSession``.

    The boundary catalog is loaded once per transaction, unless one is passed
    in, and refreshed after every split or catalog lock.
    """

    def __init__(
        self,
        session: AsyncSession,
        tablespace: str | None = None,
        catalog: list[tuple[datetime, str]] | None = None,
    ):
        self.session = session
        self._tablespace = tablespace
        self._catalog = catalog

    async def _load_catalog(self) -> list[tuple[datetime, str]]:
        if self._catalog is None:
            self._catalog = await read_boundary_catalog(self.session)
        return self._catalog

    async def _boundaries(self) -> list[datetime]:
        return [boundary for boundary, _ in await self._load_catalog()]

    async def lock_catalog(self) -> None:
        """Serialize partition layout changes until this transaction ends."""
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"), {"key": CATALOG_LOCK_KEY}
        )
        self._catalog = None

    async def list_partition_boundaries(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[datetime]:
        boundaries = await self._boundaries()
        lo = 0 if start is None else bisect.bisect_left(boundaries, to_utc(start))
        hi = len(boundaries) if end is None else bisect.bisect_left(boundaries, to_utc(end))
        return boundaries[lo:hi]

    async def get_preceding_boundary(self, before: datetime) -> datetime | None:
        boundaries = await self._boundaries()
        index = bisect.bisect_left(boundaries, to_utc(before))
        return boundaries[index - 1] if index > 0 else None

    async def lock_partitions(self, boundaries: list[datetime]) -> None:
        wanted = {to_utc(boundary) for boundary in boundaries}
        names = [
            _identifier(name)
            for boundary, name in await self._load_catalog()
            if boundary in wanted
        ]
        if not names:
            return
        await self.session.execute(text(f"LOCK TABLE {', '.join(names)} IN SHARE MODE"))
        logger.debug("Locked %d partitions for reading", len(names))

    async def scan_partition(
        self,
        boundary: datetime,
        start_id: int,
        limit: int,
    ) -> list[ChangeRecord]:
        boundary = to_utc(boundary)
        boundaries = await self._boundaries()
        index = bisect.bisect_left(boundaries, boundary)
        if index == len(boundaries) or boundaries[index] != boundary:
            return []
        upper = boundaries[index + 1] if index + 1 < len(boundaries) else None

        rcd = resource_change_data.c
        # Range predicates prune the scan down to the one partition
        query = (
            select(resource_change_data)
            .where(rcd.id >= start_id, rcd.timestamp >= boundary)
            .order_by(rcd.id)
            .limit(limit)
        )
        if upper is not None:
            query = query.where(rcd.timestamp < upper)

        result = await self.session.execute(query)
        return [ChangeRecord(**row._mapping) for row in result]

    async def split_partition(self, at: datetime) -> None:
        at = to_utc(at)
        catalog = await self._load_catalog()
        boundaries = [boundary for boundary, _ in catalog]
        index = bisect.bisect_left(boundaries, at)
        if index < len(boundaries) and boundaries[index] == at:
            raise ValueError(f"Partition boundary {at.isoformat()} already exists")

        lower, lower_name = catalog[index - 1] if index > 0 else (None, None)
        upper = boundaries[index] if index < len(boundaries) else None
        source = _identifier(lower_name or DEFAULT_PARTITION)
        new_name = _identifier(partition_name(RESOURCE_CHANGE_TABLE, at))
        upper_sql = _timestamp_literal(upper) if upper is not None else "MAXVALUE"
        columns = ", ".join(f'"{name}"' for name in _RECORD_COLUMNS)
        tablespace = (
            f" TABLESPACE {_identifier(self._tablespace)}" if self._tablespace else ""
        )

        # Partition DDL needs dynamic SQL - every name here is generated, not user input
        if lower_name is not None:
            await self.session.execute(
                text(f"ALTER TABLE {RESOURCE_CHANGE_TABLE} DETACH PARTITION {lower_name}")
            )
        await self.session.execute(
            text(
                f"CREATE TABLE {new_name} "
                f"(LIKE {RESOURCE_CHANGE_TABLE} INCLUDING DEFAULTS){tablespace}"
            )
        )

        move_filter = '"timestamp" >= :at'
        params: dict[str, datetime] = {"at": at}
        if upper is not None:
            move_filter += ' AND "timestamp" < :upper'
            params["upper"] = upper
        moved = await self.session.execute(
            text(
                f"WITH moved AS (DELETE FROM {source} WHERE {move_filter} RETURNING {columns}) "
                f"INSERT INTO {new_name} ({columns}) SELECT {columns} FROM moved"
            ),
            params,
        )

        await self.session.execute(
            text(
                f"ALTER TABLE {RESOURCE_CHANGE_TABLE} ATTACH PARTITION {new_name} "
                f"FOR VALUES FROM ({_timestamp_literal(at)}) TO ({upper_sql})"
            )
        )
        if lower_name is not None:
            await self.session.execute(
                text(
                    f"ALTER TABLE {RESOURCE_CHANGE_TABLE} ATTACH PARTITION {lower_name} "
                    f"FOR VALUES FROM ({_timestamp_literal(lower)}) TO ({_timestamp_literal(at)})"
                )
            )

        self._catalog = None
        logger.info(
            "Split partition %s at %s into %s (%d rows moved)",
            source,
            at.isoformat(),
            new_name,
            moved.rowcount,
        )


class SqlChangeStore:
    """Change store over the partitioned ``resource_change_data`` table."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        read_isolation: str | None = None,
        tablespace: str | None = None,
    ):
        """Initialize store with a session factory.

        Args:
            session_maker: Factory for the per-transaction sessions.
            read_isolation: Isolation level for repeatable-read transactions.
                Defaults to ``settings.change_feed_read_isolation``.
            tablespace: Tablespace for new partitions. Defaults to
                ``settings.partition_tablespace`` (None keeps the default).
        """
        self._session_maker = session_maker
        self._read_isolation = read_isolation or settings.change_feed_read_isolation
        self._tablespace = tablespace if tablespace is not None else settings.partition_tablespace

    @asynccontextmanager
    async def transaction(
        self, *, repeatable_read: bool = False
    ) -> AsyncIterator[SqlChangeTransaction]:
        catalog = None
        if repeatable_read:
            # A catalog query in the read transaction would take its snapshot before the locks
            async with self._session_maker() as catalog_session:
                catalog = await read_boundary_catalog(catalog_session)

        async with self._session_maker() as session, session.begin():
            if repeatable_read:
                await session.connection(
                    execution_options={"isolation_level": self._read_isolation}
                )
            yield SqlChangeTransaction(
                session,
                tablespace=self._tablespace,
                catalog=catalog,
            )


def get_change_store() -> SqlChangeStore:
    """FastAPI dependency providing the application change store."""
    return SqlChangeStore(async_session_maker)
