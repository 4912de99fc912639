"""Tests for the in-memory change store."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from changefeed.models.resource_change import ResourceChangeType
from tests.conftest import hour


class TestBoundaryCatalog:
    """Tests for boundary listing."""

    @pytest.mark.asyncio
    async def test_list_is_half_open(self, memory_store):
        async with memory_store.transaction() as tx:
            boundaries = await tx.list_partition_boundaries(start=hour(9), end=hour(12))

        assert boundaries == [hour(9), hour(10), hour(11)]

    @pytest.mark.asyncio
    async def test_list_without_bounds_returns_all(self, memory_store):
        async with memory_store.transaction() as tx:
            boundaries = await tx.list_partition_boundaries()

        assert boundaries == [hour(h) for h in range(8, 15)]

    @pytest.mark.asyncio
    async def test_preceding_boundary_is_strictly_earlier(self, memory_store):
        async with memory_store.transaction() as tx:
            assert await tx.get_preceding_boundary(hour(10)) == hour(9)
            assert await tx.get_preceding_boundary(hour(10, 1)) == hour(10)
            assert await tx.get_preceding_boundary(hour(8)) is None

    def test_boundaries_are_normalized_to_utc(self):
        from changefeed.repositories.memory import InMemoryChangeStore

        plus_two = timezone(timedelta(hours=2))
        store = InMemoryChangeStore(
            boundaries=[datetime(2026, 10, 18, 14, tzinfo=plus_two), hour(12)]
        )

        assert store.boundaries == [hour(12)]


class TestScanPartition:
    """Tests for scanning one partition."""

    @pytest.mark.asyncio
    async def test_scan_only_reads_its_partition(self, memory_store):
        in_range = await memory_store.append("a", 103, timestamp=hour(10, 59))
        await memory_store.append("b", 103, timestamp=hour(11))
        await memory_store.append("c", 103, timestamp=hour(9, 59))

        async with memory_store.transaction() as tx:
            rows = await tx.scan_partition(hour(10), 0, 10)

        assert rows == [in_range]

    @pytest.mark.asyncio
    async def test_last_partition_is_open_ended(self, memory_store):
        far = await memory_store.append("a", 103, timestamp=hour(40))

        async with memory_store.transaction() as tx:
            rows = await tx.scan_partition(hour(14), 0, 10)

        assert rows == [far]

    @pytest.mark.asyncio
    async def test_unknown_boundary_scans_nothing(self, memory_store):
        await memory_store.append("a", 103, timestamp=hour(10, 30))

        async with memory_store.transaction() as tx:
            assert await tx.scan_partition(hour(10, 30), 0, 10) == []


class TestSplitPartition:
    """Tests for partition splits and rollback."""

    @pytest.mark.asyncio
    async def test_duplicate_split_raises(self, memory_store):
        with pytest.raises(ValueError, match="already exists"):
            async with memory_store.transaction() as tx:
                await tx.split_partition(hour(10))

    @pytest.mark.asyncio
    async def test_error_rolls_back_splits(self, empty_store):
        with pytest.raises(RuntimeError):
            async with empty_store.transaction() as tx:
                await tx.split_partition(hour(12))
                raise RuntimeError("boom")

        assert empty_store.boundaries == []


class TestAppend:
    """Tests for change row appends."""

    @pytest.mark.asyncio
    async def test_append_assigns_increasing_ids(self, empty_store):
        first = await empty_store.append("p1", 103, change_type=ResourceChangeType.CREATED)
        second = await empty_store.append("p1", 103, 2, ResourceChangeType.UPDATED)

        assert second.id == first.id + 1
        assert second.resource_change_type_id == 1
        assert first.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_concurrent_appends_get_unique_ids(self, empty_store):
        records = await asyncio.gather(
            *(empty_store.append(f"p{i}", 103) for i in range(20))
        )

        assert len({r.id for r in records}) == 20
