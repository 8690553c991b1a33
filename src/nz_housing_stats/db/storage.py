"""SQLite storage for the location hierarchy, snapshots and suburb facts."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Final

import aiosqlite

from nz_housing_stats.db.aggregate_queries import AggregateQueryService, SortBy
from nz_housing_stats.db.collection_repo import CollectionRepository, HierarchySyncResult
from nz_housing_stats.db.legacy_migration import LegacyMigrationReport, migrate_legacy_snapshots
from nz_housing_stats.db.query_cache import QueryCache
from nz_housing_stats.db.row_mappers import (
    HistoricalPoint,
    LocationTotal,
    SnapshotListItem,
    SnapshotRow,
    SuburbDetail,
    SuburbHistoryPoint,
    TotalsSummary,
)
from nz_housing_stats.logging import get_logger
from nz_housing_stats.models import (
    District,
    ListingTypeCode,
    LocationLevel,
    Region,
    SnapshotStatus,
    Suburb,
    SuburbFact,
)

logger = get_logger(__name__)

# Region, district and suburb IDs are the upstream identifiers, never
# AUTOINCREMENT values.
_SCHEMA: Final = (
    """
    CREATE TABLE IF NOT EXISTS regions (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS districts (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        region_id INTEGER NOT NULL REFERENCES regions(id),
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_districts_region ON districts(region_id)",
    """
    CREATE TABLE IF NOT EXISTS suburbs (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        district_id INTEGER NOT NULL REFERENCES districts(id),
        region_id INTEGER NOT NULL REFERENCES regions(id),
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_suburbs_district ON suburbs(district_id)",
    "CREATE INDEX IF NOT EXISTS idx_suburbs_region ON suburbs(region_id)",
    """
    CREATE TABLE IF NOT EXISTS listing_types (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        category TEXT NOT NULL,
        active BOOLEAN NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        snapshot_date TEXT NOT NULL UNIQUE,
        collected_at TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'in_progress'
            CHECK (status IN ('in_progress', 'completed', 'failed')),
        processing_time_ms INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS suburb_listings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        snapshot_id INTEGER NOT NULL REFERENCES snapshots(id) ON DELETE CASCADE,
        listing_type_id INTEGER NOT NULL REFERENCES listing_types(id),
        suburb_id INTEGER NOT NULL REFERENCES suburbs(id),
        listing_count INTEGER NOT NULL CHECK (listing_count > 0),
        UNIQUE(snapshot_id, listing_type_id, suburb_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_suburb_listings_type_snapshot
    ON suburb_listings(listing_type_id, snapshot_id)
    """,
    "CREATE INDEX IF NOT EXISTS idx_suburb_listings_suburb ON suburb_listings(suburb_id)",
)


class HousingStorage:
    """SQLite-based storage for listing-count snapshots."""

    def __init__(self, db_path: str, *, cache: QueryCache | None = None) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
            cache: Query result cache; a default TTL cache is used if omitted.
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        # Readers and writers share one connection; every facade call holds this
        # lock so a read never runs inside an uncommitted write.
        self._lock = asyncio.Lock()
        self._ensure_directory()
        self._collection = CollectionRepository(self._get_connection)
        self._queries = AggregateQueryService(self._get_connection, cache)

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != ":memory:":
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def initialize(self) -> None:
        """Create the schema and seed the listing types."""
        async with self._lock:
            await self._initialize()

    async def _initialize(self) -> None:
        conn = await self._get_connection()
        for statement in _SCHEMA:
            await conn.execute(statement)

        await conn.executemany(
            "INSERT OR IGNORE INTO listing_types (code, name, category) VALUES (?, ?, ?)",
            [(t.value, t.display_name, t.category) for t in ListingTypeCode],
        )
        await conn.commit()

        logger.info("database_initialized", db_path=self.db_path)

    @property
    def query_cache(self) -> QueryCache:
        return self._queries.cache

    def clear_query_cache(self) -> None:
        """Drop memoized query results (called after each collection run)."""
        self._queries.cache.clear()

    # ------------------------------------------------------------------
    # Collection writes (delegated to CollectionRepository)
    # ------------------------------------------------------------------

    async def get_listing_type_id(self, code: ListingTypeCode | str) -> int:
        """Resolve a listing type code to its row ID."""
        async with self._lock:
            return await self._collection.get_listing_type_id(code)

    async def ensure_hierarchy(
        self,
        regions: Sequence[Region],
        districts: Sequence[District],
        suburbs: Sequence[Suburb],
    ) -> HierarchySyncResult:
        """Insert missing hierarchy rows and correct changed names."""
        async with self._lock:
            return await self._collection.ensure_hierarchy(regions, districts, suburbs)

    async def upsert_snapshot(self, snapshot_date: date, collected_at: datetime) -> int:
        """Create or restart the in-progress snapshot for a date."""
        async with self._lock:
            return await self._collection.upsert_snapshot(snapshot_date, collected_at)

    async def finish_snapshot(
        self,
        snapshot_id: int,
        status: SnapshotStatus,
        *,
        processing_time_ms: int | None = None,
    ) -> None:
        """Mark a snapshot completed or failed."""
        async with self._lock:
            await self._collection.finish_snapshot(
                snapshot_id, status, processing_time_ms=processing_time_ms
            )

    async def replace_facts(
        self,
        snapshot_id: int,
        listing_type_id: int,
        facts: Sequence[SuburbFact],
    ) -> int:
        """Atomically replace the fact rows for (snapshot, listing type)."""
        async with self._lock:
            return await self._collection.replace_facts(snapshot_id, listing_type_id, facts)

    async def migrate_legacy(self) -> LegacyMigrationReport:
        """Convert legacy flat snapshot tables in this database, if present."""
        async with self._lock:
            conn = await self._get_connection()
            report = await migrate_legacy_snapshots(conn)
        self.clear_query_cache()
        return report

    # ------------------------------------------------------------------
    # Aggregate reads (delegated to AggregateQueryService)
    # ------------------------------------------------------------------

    async def latest_snapshot(self, code: ListingTypeCode | str) -> SnapshotRow | None:
        """Most recent snapshot holding data for the listing type."""
        async with self._lock:
            return await self._queries.latest_snapshot(code)

    async def recent_snapshots(self, limit: int = 10) -> list[SnapshotListItem]:
        """Latest snapshots with status and fact row counts."""
        async with self._lock:
            return await self._queries.recent_snapshots(limit)

    async def stale_snapshots(self) -> list[SnapshotRow]:
        """Snapshots failed, in progress or missing a listing type."""
        async with self._lock:
            return await self._queries.stale_snapshots()

    async def region_totals(
        self, code: ListingTypeCode | str, limit: int = 100
    ) -> list[LocationTotal]:
        """Totals per region for the latest snapshot."""
        async with self._lock:
            return await self._queries.region_totals(code, limit)

    async def district_totals(
        self, code: ListingTypeCode | str, region_id: int, limit: int = 100
    ) -> list[LocationTotal]:
        """Totals per district of one region for the latest snapshot."""
        async with self._lock:
            return await self._queries.district_totals(code, region_id, limit)

    async def suburb_totals(
        self, code: ListingTypeCode | str, district_id: int, limit: int = 100
    ) -> list[LocationTotal]:
        """Suburb counts of one district for the latest snapshot."""
        async with self._lock:
            return await self._queries.suburb_totals(code, district_id, limit)

    async def locations_with_filters(
        self,
        code: ListingTypeCode | str,
        level: LocationLevel | str,
        *,
        region_id: int | None = None,
        district_id: int | None = None,
        min_listings: int = 0,
        limit: int = 100,
        sort_by: SortBy = "listing_count",
    ) -> list[LocationTotal]:
        """Level-parameterized location totals for the latest snapshot."""
        async with self._lock:
            return await self._queries.locations_with_filters(
                code,
                level,
                region_id=region_id,
                district_id=district_id,
                min_listings=min_listings,
                limit=limit,
                sort_by=sort_by,
            )

    async def totals_summary(
        self, code: ListingTypeCode | str, *, snapshot_date: date | None = None
    ) -> TotalsSummary:
        """National total and distinct location counts."""
        async with self._lock:
            return await self._queries.totals_summary(code, snapshot_date=snapshot_date)

    async def historical_series(
        self, code: ListingTypeCode | str, limit: int | None = None
    ) -> list[HistoricalPoint]:
        """Four-granularity historical series."""
        async with self._lock:
            return await self._queries.historical_series(code, limit)

    async def suburb_detail(
        self, code: ListingTypeCode | str, suburb_id: int
    ) -> SuburbDetail | None:
        """Point lookup of one suburb."""
        async with self._lock:
            return await self._queries.suburb_detail(code, suburb_id)

    async def suburb_history(
        self, code: ListingTypeCode | str, suburb_id: int, limit: int | None = None
    ) -> list[SuburbHistoryPoint]:
        """Zero-filled history of one suburb."""
        async with self._lock:
            return await self._queries.suburb_history(code, suburb_id, limit)
