"""Collection repository: the only writer of hierarchy, snapshot and fact rows."""

from __future__ import annotations

from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import aiosqlite

from nz_housing_stats.logging import get_logger
from nz_housing_stats.models import (
    District,
    ListingTypeCode,
    Region,
    SnapshotStatus,
    Suburb,
    SuburbFact,
)

logger = get_logger(__name__)


class UnknownListingTypeError(Exception):
    """Raised when a listing type code is not seeded (or inactive) in listing_types."""


@dataclass(frozen=True)
class HierarchySyncResult:
    """How many hierarchy rows a sync created."""

    new_regions: int
    new_districts: int
    new_suburbs: int


async def _count(conn: aiosqlite.Connection, table: str) -> int:
    cursor = await conn.execute(f"SELECT COUNT(*) FROM {table}")
    row = await cursor.fetchone()
    return int(row[0]) if row else 0


class CollectionRepository:
    """Write operations used by the collector.

    Hierarchy rows are only ever ensured: inserted when absent, with the
    display name corrected in place. Their IDs and parent links are never
    rewritten. Snapshot rows are upserted: a second run on the same date
    overwrites status and timestamps of the existing row.
    """

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    async def get_listing_type_id(self, code: ListingTypeCode | str) -> int:
        """Resolve a listing type code to its row ID.

        Raises:
            UnknownListingTypeError: If the code is not seeded or is inactive.
        """
        code_value = code.value if isinstance(code, ListingTypeCode) else code
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT id FROM listing_types WHERE code = ? AND active = 1",
            (code_value,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise UnknownListingTypeError(f"Listing type not configured: {code_value}")
        return int(row["id"])

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    async def ensure_hierarchy(
        self,
        regions: Sequence[Region],
        districts: Sequence[District],
        suburbs: Sequence[Suburb],
    ) -> HierarchySyncResult:
        """Ensure every region, district and suburb row exists.

        Parents are written before children so foreign keys hold. A suburb's
        ``region_id`` is copied from its stored district, which keeps the
        denormalized column consistent even if upstream moves a district.
        The whole sync commits as one transaction.
        """
        conn = await self._get_connection()
        before = (
            await _count(conn, "regions"),
            await _count(conn, "districts"),
            await _count(conn, "suburbs"),
        )
        try:
            await conn.executemany(
                """
                INSERT INTO regions (id, name) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name
                WHERE regions.name != excluded.name
                """,
                [(r.id, r.name) for r in regions],
            )
            await conn.executemany(
                """
                INSERT INTO districts (id, name, region_id) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name
                WHERE districts.name != excluded.name
                """,
                [(d.id, d.name, d.region_id) for d in districts],
            )
            await conn.executemany(
                """
                INSERT INTO suburbs (id, name, district_id, region_id)
                SELECT ?, ?, d.id, d.region_id FROM districts d WHERE d.id = ?
                ON CONFLICT(id) DO UPDATE SET name = excluded.name
                WHERE suburbs.name != excluded.name
                """,
                [(s.id, s.name, s.district_id) for s in suburbs],
            )
            await conn.commit()
        except aiosqlite.Error:
            await conn.rollback()
            raise

        result = HierarchySyncResult(
            new_regions=await _count(conn, "regions") - before[0],
            new_districts=await _count(conn, "districts") - before[1],
            new_suburbs=await _count(conn, "suburbs") - before[2],
        )
        logger.info(
            "hierarchy_synced",
            regions=len(regions),
            districts=len(districts),
            suburbs=len(suburbs),
            new_regions=result.new_regions,
            new_districts=result.new_districts,
            new_suburbs=result.new_suburbs,
        )
        return result

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def upsert_snapshot(self, snapshot_date: date, collected_at: datetime) -> int:
        """Create or restart the snapshot for a calendar date.

        An existing row for the date (completed, failed or in progress) is
        reset to ``in_progress`` and keeps its ID, so facts already stored
        for other listing types stay attached.

        Returns:
            The snapshot ID.
        """
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO snapshots (snapshot_date, collected_at, status, processing_time_ms)
            VALUES (?, ?, ?, NULL)
            ON CONFLICT(snapshot_date) DO UPDATE SET
                collected_at = excluded.collected_at,
                status = excluded.status,
                processing_time_ms = NULL
            """,
            (
                snapshot_date.isoformat(),
                collected_at.isoformat(),
                SnapshotStatus.IN_PROGRESS.value,
            ),
        )
        cursor = await conn.execute(
            "SELECT id FROM snapshots WHERE snapshot_date = ?",
            (snapshot_date.isoformat(),),
        )
        row = await cursor.fetchone()
        await conn.commit()
        assert row is not None
        return int(row["id"])

    async def finish_snapshot(
        self,
        snapshot_id: int,
        status: SnapshotStatus,
        *,
        processing_time_ms: int | None = None,
    ) -> None:
        """Mark a snapshot completed or failed and record its processing time."""
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE snapshots SET status = ?, processing_time_ms = ? WHERE id = ?",
            (status.value, processing_time_ms, snapshot_id),
        )
        await conn.commit()

    # ------------------------------------------------------------------
    # Facts
    # ------------------------------------------------------------------

    async def replace_facts(
        self,
        snapshot_id: int,
        listing_type_id: int,
        facts: Sequence[SuburbFact],
    ) -> int:
        """Replace all fact rows for (snapshot, listing type).

        The delete and the bulk insert run in one transaction. Readers on other
        connections see either the previous fact set or the new one; readers
        sharing this connection must not interleave with the call
        (``HousingStorage`` serializes them).

        Returns:
            Number of fact rows written.
        """
        conn = await self._get_connection()
        try:
            await conn.execute(
                "DELETE FROM suburb_listings WHERE snapshot_id = ? AND listing_type_id = ?",
                (snapshot_id, listing_type_id),
            )
            await conn.executemany(
                """
                INSERT INTO suburb_listings (snapshot_id, listing_type_id, suburb_id, listing_count)
                VALUES (?, ?, ?, ?)
                """,
                [(snapshot_id, listing_type_id, f.suburb_id, f.listing_count) for f in facts],
            )
            await conn.commit()
        except aiosqlite.Error:
            await conn.rollback()
            raise

        logger.debug(
            "facts_replaced",
            snapshot_id=snapshot_id,
            listing_type_id=listing_type_id,
            rows=len(facts),
        )
        return len(facts)
