"""One-off migration from the legacy flat snapshot tables.

The legacy layout stored every upstream node (region, district and suburb
rows alike) in ``location_snapshots`` with its own count, which double
counted whenever levels were summed together. Only suburb-level positive
counts are carried over; region and district rows contribute hierarchy
names only.
"""

from __future__ import annotations

from dataclasses import dataclass

import aiosqlite

from nz_housing_stats.logging import get_logger
from nz_housing_stats.models import ALL_LOCATIONS_LOCALITY_ID, SnapshotStatus

logger = get_logger(__name__)

# Latest legacy collection run per (date, listing type). The legacy job ran
# several times a day, so each date can hold more than one copy of the tree.
_LATEST_RUNS_CTE = """
    WITH latest_runs AS (
        SELECT snapshot_date, listing_type, MAX(collected_at) AS collected_at
        FROM location_snapshots
        GROUP BY snapshot_date, listing_type
    )
"""


@dataclass(frozen=True)
class LegacyMigrationReport:
    """Row counts created by the migration and a total cross-check."""

    legacy_tables_found: bool
    regions: int = 0
    districts: int = 0
    suburbs: int = 0
    snapshots: int = 0
    fact_rows: int = 0
    legacy_suburb_total: int = 0
    migrated_total: int = 0

    @property
    def totals_match(self) -> bool:
        return self.legacy_suburb_total == self.migrated_total


async def _table_exists(conn: aiosqlite.Connection, name: str) -> bool:
    cursor = await conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    )
    return await cursor.fetchone() is not None


async def _scalar(conn: aiosqlite.Connection, sql: str, params: tuple[object, ...] = ()) -> int:
    cursor = await conn.execute(sql, params)
    row = await cursor.fetchone()
    return int(row[0] or 0) if row else 0


async def migrate_legacy_snapshots(conn: aiosqlite.Connection) -> LegacyMigrationReport:
    """Populate the normalized tables from ``location_snapshots``.

    Safe to run repeatedly: every insert ignores rows that already exist.
    Listing types that are not seeded (e.g. commercial) are skipped.

    Args:
        conn: Connection to a database already initialized with the
            normalized schema.

    Returns:
        What was migrated, including legacy vs migrated suburb totals.
    """
    if not await _table_exists(conn, "location_snapshots"):
        logger.info("legacy_tables_absent")
        return LegacyMigrationReport(legacy_tables_found=False)

    sentinel = ALL_LOCATIONS_LOCALITY_ID
    before = {
        table: await _scalar(conn, f"SELECT COUNT(*) FROM {table}")
        for table in ("regions", "districts", "suburbs", "snapshots", "suburb_listings")
    }

    try:
        # Bare columns alongside MAX() take their values from the newest row.
        await conn.execute(
            """
            INSERT OR IGNORE INTO regions (id, name)
            SELECT region_id, region_name FROM (
                SELECT region_id, region_name, MAX(collected_at)
                FROM location_snapshots
                WHERE region_id IS NOT NULL AND region_name IS NOT NULL AND region_id != ?
                GROUP BY region_id
            )
            """,
            (sentinel,),
        )
        await conn.execute(
            """
            INSERT OR IGNORE INTO districts (id, name, region_id)
            SELECT x.district_id, x.district_name, x.region_id FROM (
                SELECT district_id, district_name, region_id, MAX(collected_at)
                FROM location_snapshots
                WHERE district_id IS NOT NULL AND district_name IS NOT NULL
                  AND region_id != ?
                GROUP BY district_id
            ) x
            JOIN regions r ON r.id = x.region_id
            """,
            (sentinel,),
        )
        await conn.execute(
            """
            INSERT OR IGNORE INTO suburbs (id, name, district_id, region_id)
            SELECT x.suburb_id, x.suburb_name, d.id, d.region_id FROM (
                SELECT suburb_id, suburb_name, district_id, MAX(collected_at)
                FROM location_snapshots
                WHERE location_type = 'suburb' AND suburb_id IS NOT NULL
                  AND suburb_name IS NOT NULL AND region_id != ?
                GROUP BY suburb_id
            ) x
            JOIN districts d ON d.id = x.district_id
            """,
            (sentinel,),
        )
        await conn.execute(
            """
            INSERT OR IGNORE INTO snapshots (snapshot_date, collected_at, status)
            SELECT snapshot_date, MAX(collected_at), ?
            FROM location_snapshots
            GROUP BY snapshot_date
            """,
            (SnapshotStatus.COMPLETED.value,),
        )
        await conn.execute(
            f"""
            {_LATEST_RUNS_CTE}
            INSERT OR IGNORE INTO suburb_listings
                (snapshot_id, listing_type_id, suburb_id, listing_count)
            SELECT s.id, lt.id, ls.suburb_id, ls.listing_count
            FROM location_snapshots ls
            JOIN latest_runs lr
              ON lr.snapshot_date = ls.snapshot_date
             AND lr.listing_type = ls.listing_type
             AND lr.collected_at = ls.collected_at
            JOIN snapshots s ON s.snapshot_date = ls.snapshot_date
            JOIN listing_types lt ON lt.code = ls.listing_type
            JOIN suburbs sb ON sb.id = ls.suburb_id
            WHERE ls.location_type = 'suburb'
              AND ls.listing_count > 0
              AND ls.region_id != ?
            """,
            (sentinel,),
        )
        await conn.commit()
    except aiosqlite.Error:
        await conn.rollback()
        raise

    legacy_total = await _scalar(
        conn,
        f"""
        {_LATEST_RUNS_CTE}
        SELECT SUM(ls.listing_count)
        FROM location_snapshots ls
        JOIN latest_runs lr
          ON lr.snapshot_date = ls.snapshot_date
         AND lr.listing_type = ls.listing_type
         AND lr.collected_at = ls.collected_at
        JOIN listing_types lt ON lt.code = ls.listing_type
        WHERE ls.location_type = 'suburb' AND ls.listing_count > 0 AND ls.region_id != ?
        """,
        (sentinel,),
    )
    migrated_total = await _scalar(
        conn,
        """
        SELECT SUM(sl.listing_count)
        FROM suburb_listings sl
        JOIN snapshots s ON s.id = sl.snapshot_id
        WHERE s.snapshot_date IN (SELECT DISTINCT snapshot_date FROM location_snapshots)
        """,
    )

    report = LegacyMigrationReport(
        legacy_tables_found=True,
        regions=await _scalar(conn, "SELECT COUNT(*) FROM regions") - before["regions"],
        districts=await _scalar(conn, "SELECT COUNT(*) FROM districts") - before["districts"],
        suburbs=await _scalar(conn, "SELECT COUNT(*) FROM suburbs") - before["suburbs"],
        snapshots=await _scalar(conn, "SELECT COUNT(*) FROM snapshots") - before["snapshots"],
        fact_rows=await _scalar(conn, "SELECT COUNT(*) FROM suburb_listings")
        - before["suburb_listings"],
        legacy_suburb_total=legacy_total,
        migrated_total=migrated_total,
    )
    log = logger.info if report.totals_match else logger.warning
    log(
        "legacy_migration_complete",
        regions=report.regions,
        districts=report.districts,
        suburbs=report.suburbs,
        snapshots=report.snapshots,
        fact_rows=report.fact_rows,
        legacy_total=report.legacy_suburb_total,
        migrated_total=report.migrated_total,
    )
    return report
