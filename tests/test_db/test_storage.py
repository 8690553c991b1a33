"""Tests for the SQLite storage facade and schema."""

import asyncio
from datetime import date, datetime
from pathlib import Path

import aiosqlite
import pytest

from nz_housing_stats.db import HousingStorage, QueryCache
from nz_housing_stats.models import (
    District,
    ListingTypeCode,
    Region,
    SnapshotStatus,
    Suburb,
    SuburbFact,
)


async def _tables(storage: HousingStorage) -> set[str]:
    conn = await storage._get_connection()
    cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row["name"] for row in await cursor.fetchall()}


class TestInitialize:
    @pytest.mark.asyncio
    async def test_creates_normalized_tables(self, storage: HousingStorage) -> None:
        assert {
            "regions",
            "districts",
            "suburbs",
            "listing_types",
            "snapshots",
            "suburb_listings",
        } <= await _tables(storage)

    @pytest.mark.asyncio
    async def test_seeds_listing_types(self, storage: HousingStorage) -> None:
        conn = await storage._get_connection()
        cursor = await conn.execute(
            "SELECT code, name, category, active FROM listing_types ORDER BY id"
        )
        rows = [tuple(row) for row in await cursor.fetchall()]
        assert rows == [
            ("HOUSES_TO_BUY", "Houses for Sale", "RESIDENTIAL", 1),
            ("HOUSES_TO_RENT", "Houses for Rent", "RESIDENTIAL", 1),
        ]

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, storage: HousingStorage) -> None:
        await storage.initialize()
        conn = await storage._get_connection()
        cursor = await conn.execute("SELECT COUNT(*) FROM listing_types")
        row = await cursor.fetchone()
        assert row is not None
        assert row[0] == 2

    @pytest.mark.asyncio
    async def test_foreign_keys_enforced(self, storage: HousingStorage) -> None:
        conn = await storage._get_connection()
        with pytest.raises(aiosqlite.IntegrityError):
            await conn.execute("INSERT INTO districts (id, name, region_id) VALUES (1, 'X', 999)")
        await conn.rollback()

    @pytest.mark.asyncio
    async def test_zero_count_rejected_by_schema(self, storage: HousingStorage) -> None:
        await storage.ensure_hierarchy([Region(id=1, name="R")], [], [])
        snapshot_id = await storage.upsert_snapshot(date(2025, 3, 1), datetime(2025, 3, 1, 8))
        conn = await storage._get_connection()
        await conn.execute("INSERT INTO districts (id, name, region_id) VALUES (2, 'D', 1)")
        await conn.execute(
            "INSERT INTO suburbs (id, name, district_id, region_id) VALUES (3, 'S', 2, 1)"
        )
        with pytest.raises(aiosqlite.IntegrityError):
            await conn.execute(
                "INSERT INTO suburb_listings (snapshot_id, listing_type_id, suburb_id, "
                "listing_count) VALUES (?, 1, 3, 0)",
                (snapshot_id,),
            )
        await conn.rollback()

    @pytest.mark.asyncio
    async def test_snapshot_delete_cascades_to_facts(self, storage: HousingStorage) -> None:
        conn = await storage._get_connection()
        await conn.execute("INSERT INTO regions (id, name) VALUES (1, 'R')")
        await conn.execute("INSERT INTO districts (id, name, region_id) VALUES (2, 'D', 1)")
        await conn.execute(
            "INSERT INTO suburbs (id, name, district_id, region_id) VALUES (3, 'S', 2, 1)"
        )
        await conn.commit()
        snapshot_id = await storage.upsert_snapshot(date(2025, 3, 1), datetime(2025, 3, 1, 8))
        await conn.execute(
            "INSERT INTO suburb_listings (snapshot_id, listing_type_id, suburb_id, listing_count) "
            "VALUES (?, 1, 3, 5)",
            (snapshot_id,),
        )
        await conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
        await conn.commit()

        cursor = await conn.execute("SELECT COUNT(*) FROM suburb_listings")
        row = await cursor.fetchone()
        assert row is not None
        assert row[0] == 0


class TestConnection:
    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "stats.db"
        storage = HousingStorage(str(db_path))
        try:
            await storage.initialize()
        finally:
            await storage.close()
        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_data_persists_across_connections(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "stats.db")
        storage = HousingStorage(db_path)
        await storage.initialize()
        await storage.ensure_hierarchy([Region(id=9, name="Northland")], [], [])
        await storage.close()

        reopened = HousingStorage(db_path)
        try:
            await reopened.initialize()
            conn = await reopened._get_connection()
            cursor = await conn.execute("SELECT name FROM regions WHERE id = 9")
            row = await cursor.fetchone()
        finally:
            await reopened.close()
        assert row is not None
        assert row["name"] == "Northland"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        storage = HousingStorage(":memory:")
        await storage.initialize()
        await storage.close()
        await storage.close()


class TestQueryCacheWiring:
    @pytest.mark.asyncio
    async def test_uses_injected_cache(self) -> None:
        cache = QueryCache(ttl_seconds=10)
        storage = HousingStorage(":memory:", cache=cache)
        try:
            assert storage.query_cache is cache
        finally:
            await storage.close()

    @pytest.mark.asyncio
    async def test_clear_query_cache(self, storage: HousingStorage) -> None:
        storage.query_cache.set(("k",), 1)
        storage.clear_query_cache()
        assert len(storage.query_cache) == 0


class TestSharedConnectionIsolation:
    @pytest.mark.asyncio
    async def test_read_during_fact_replace_sees_committed_facts(
        self, storage: HousingStorage
    ) -> None:
        await storage.ensure_hierarchy(
            [Region(id=9, name="Northland")],
            [District(id=1, name="Far North", region_id=9)],
            [Suburb(id=1736, name="Kerikeri", district_id=1, region_id=9)],
        )
        snapshot_id = await storage.upsert_snapshot(date(2025, 3, 1), datetime(2025, 3, 1, 8))
        buy = await storage.get_listing_type_id(ListingTypeCode.HOUSES_TO_BUY)
        await storage.replace_facts(
            snapshot_id, buy, [SuburbFact(suburb_id=1736, listing_count=354)]
        )
        await storage.finish_snapshot(snapshot_id, SnapshotStatus.COMPLETED)

        writer = asyncio.create_task(
            storage.replace_facts(
                snapshot_id, buy, [SuburbFact(suburb_id=1736, listing_count=360)]
            )
        )
        # Let the writer start its delete before the read is issued
        await asyncio.sleep(0)
        regions = await storage.region_totals(ListingTypeCode.HOUSES_TO_BUY)
        await writer

        assert [r["listing_count"] for r in regions] == [360]

    @pytest.mark.asyncio
    async def test_concurrent_reads_while_collecting_never_empty(
        self, storage: HousingStorage
    ) -> None:
        await storage.ensure_hierarchy(
            [Region(id=9, name="Northland")],
            [District(id=1, name="Far North", region_id=9)],
            [Suburb(id=1736, name="Kerikeri", district_id=1, region_id=9)],
        )
        snapshot_id = await storage.upsert_snapshot(date(2025, 3, 1), datetime(2025, 3, 1, 8))
        buy = await storage.get_listing_type_id(ListingTypeCode.HOUSES_TO_BUY)
        await storage.replace_facts(snapshot_id, buy, [SuburbFact(suburb_id=1736, listing_count=1)])

        async def write_many() -> None:
            for count in range(2, 12):
                await storage.replace_facts(
                    snapshot_id, buy, [SuburbFact(suburb_id=1736, listing_count=count)]
                )
                storage.clear_query_cache()

        async def read_many() -> list[int]:
            totals: list[int] = []
            for _ in range(20):
                summary = await storage.totals_summary(ListingTypeCode.HOUSES_TO_BUY)
                totals.append(summary["total"])
                await asyncio.sleep(0)
            return totals

        _, totals = await asyncio.gather(write_many(), read_many())

        assert all(total > 0 for total in totals)
