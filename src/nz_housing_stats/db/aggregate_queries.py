"""Aggregation query service: read-only roll-ups of suburb facts.

Every total is a SUM over ``suburb_listings`` joined through the hierarchy.
No region or district count is ever read from storage, so totals at
different levels of the same snapshot always agree.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from datetime import date
from typing import Any, Final, Literal

import aiosqlite

from nz_housing_stats.db.query_cache import QueryCache
from nz_housing_stats.db.row_mappers import (
    HistoricalPoint,
    LocationTotal,
    SnapshotListItem,
    SnapshotRow,
    SuburbDetail,
    SuburbHistoryPoint,
    TotalsSummary,
    row_to_snapshot,
    zero_summary,
)
from nz_housing_stats.logging import get_logger
from nz_housing_stats.models import ListingTypeCode, LocationLevel, SnapshotStatus

logger = get_logger(__name__)

SortBy = Literal["listing_count", "name"]

_FACT_JOINS: Final = """
    FROM suburb_listings sl
    JOIN suburbs sb ON sb.id = sl.suburb_id
    JOIN districts d ON d.id = sb.district_id
    JOIN regions r ON r.id = sb.region_id
"""

# Per-level SELECT list, GROUP BY, and the id/name columns used for ordering
_LEVEL_SQL: Final[dict[LocationLevel, tuple[str, str, str, str]]] = {
    LocationLevel.REGION: (
        """
        'region' AS location_type,
        r.id AS region_id, r.name AS region_name,
        NULL AS district_id, NULL AS district_name,
        NULL AS suburb_id, NULL AS suburb_name,
        SUM(sl.listing_count) AS listing_count,
        COUNT(DISTINCT sl.suburb_id) AS suburb_count
        """,
        "GROUP BY r.id, r.name",
        "r.id",
        "r.name",
    ),
    LocationLevel.DISTRICT: (
        """
        'district' AS location_type,
        r.id AS region_id, r.name AS region_name,
        d.id AS district_id, d.name AS district_name,
        NULL AS suburb_id, NULL AS suburb_name,
        SUM(sl.listing_count) AS listing_count,
        COUNT(DISTINCT sl.suburb_id) AS suburb_count
        """,
        "GROUP BY d.id, d.name, r.id, r.name",
        "d.id",
        "d.name",
    ),
    LocationLevel.SUBURB: (
        """
        'suburb' AS location_type,
        r.id AS region_id, r.name AS region_name,
        d.id AS district_id, d.name AS district_name,
        sb.id AS suburb_id, sb.name AS suburb_name,
        sl.listing_count AS listing_count,
        NULL AS suburb_count
        """,
        "",
        "sb.id",
        "sb.name",
    ),
}


def _code_value(code: ListingTypeCode | str) -> str:
    return code.value if isinstance(code, ListingTypeCode) else code


class AggregateQueryService:
    """Read-only aggregate queries for the presentation layer.

    Queries that depend on the latest snapshot are memoized in a
    :class:`QueryCache` keyed by the snapshot's identity, so a new or
    re-collected snapshot never serves stale results from an old one.
    """

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
        cache: QueryCache | None = None,
    ) -> None:
        self._get_connection = get_connection
        self.cache = cache if cache is not None else QueryCache()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def latest_snapshot(
        self,
        code: ListingTypeCode | str,
        *,
        on_or_before: date | None = None,
    ) -> SnapshotRow | None:
        """Most recent snapshot that holds facts for the listing type.

        Args:
            code: Listing type code.
            on_or_before: Only consider snapshots up to this date.
        """
        conn = await self._get_connection()
        params: list[Any] = [_code_value(code)]
        date_clause = ""
        if on_or_before is not None:
            date_clause = "AND s.snapshot_date <= ?"
            params.append(on_or_before.isoformat())
        cursor = await conn.execute(
            f"""
            SELECT s.* FROM snapshots s
            WHERE EXISTS (
                SELECT 1 FROM suburb_listings sl
                JOIN listing_types lt ON lt.id = sl.listing_type_id
                WHERE sl.snapshot_id = s.id AND lt.code = ?
            )
            {date_clause}
            ORDER BY s.snapshot_date DESC
            LIMIT 1
            """,
            params,
        )
        row = await cursor.fetchone()
        return row_to_snapshot(row) if row is not None else None

    async def recent_snapshots(self, limit: int = 10) -> list[SnapshotListItem]:
        """Latest snapshots of any status, newest first, with their fact row counts."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT s.*,
                (SELECT COUNT(*) FROM suburb_listings sl WHERE sl.snapshot_id = s.id) AS fact_rows
            FROM snapshots s
            ORDER BY s.snapshot_date DESC
            LIMIT ?
            """,
            (limit,),
        )
        rows = await cursor.fetchall()
        return [SnapshotListItem(**row_to_snapshot(row), fact_rows=row["fact_rows"]) for row in rows]

    async def stale_snapshots(self) -> list[SnapshotRow]:
        """Snapshots that are not fully collected, oldest first.

        A snapshot row is shared by every listing type on its date, so its
        status only reflects the listing type that finished last. Besides rows
        left ``in_progress`` or ``failed``, this also reports dates missing
        facts for an active listing type that was already being collected by
        then (e.g. rent failed, then a buy-only re-run marked the date
        completed).
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT s.* FROM snapshots s
            WHERE s.status != ?
               OR EXISTS (
                    SELECT 1 FROM listing_types lt
                    WHERE lt.active = 1
                      AND (
                        SELECT MIN(s2.snapshot_date)
                        FROM suburb_listings x
                        JOIN snapshots s2 ON s2.id = x.snapshot_id
                        WHERE x.listing_type_id = lt.id
                      ) <= s.snapshot_date
                      AND NOT EXISTS (
                        SELECT 1 FROM suburb_listings sl
                        WHERE sl.snapshot_id = s.id AND sl.listing_type_id = lt.id
                      )
               )
            ORDER BY s.snapshot_date ASC
            """,
            (SnapshotStatus.COMPLETED.value,),
        )
        rows = await cursor.fetchall()
        return [row_to_snapshot(row) for row in rows]

    # ------------------------------------------------------------------
    # Latest-snapshot roll-ups
    # ------------------------------------------------------------------

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
        """Totals per location at one hierarchy level for the latest snapshot.

        Rows have the same keys at every level; inapplicable fields are None.

        Args:
            code: Listing type code.
            level: Hierarchy level to group by.
            region_id: Restrict to locations inside this region.
            district_id: Restrict to locations inside this district.
            min_listings: Drop locations whose total is below this value.
            limit: Maximum rows returned.
            sort_by: ``listing_count`` (descending) or ``name`` (ascending).
                Ties are broken by ascending upstream ID.
        """
        level = LocationLevel(level)
        snapshot = await self.latest_snapshot(code)
        if snapshot is None:
            return []
        key = (
            "locations",
            _code_value(code),
            snapshot["id"],
            snapshot["collected_at"],
            snapshot["status"],
            level.value,
            region_id,
            district_id,
            min_listings,
            limit,
            sort_by,
        )
        return await self.cache.get_or_load(
            key,
            lambda: self._load_locations(
                snapshot,
                code,
                level,
                region_id=region_id,
                district_id=district_id,
                min_listings=min_listings,
                limit=limit,
                sort_by=sort_by,
            ),
        )

    async def _load_locations(
        self,
        snapshot: SnapshotRow,
        code: ListingTypeCode | str,
        level: LocationLevel,
        *,
        region_id: int | None,
        district_id: int | None,
        min_listings: int,
        limit: int,
        sort_by: SortBy,
    ) -> list[LocationTotal]:
        select_sql, group_sql, id_col, name_col = _LEVEL_SQL[level]
        where = [
            "sl.snapshot_id = ?",
            "sl.listing_type_id = (SELECT id FROM listing_types WHERE code = ?)",
        ]
        params: list[Any] = [snapshot["id"], _code_value(code)]
        if region_id is not None:
            where.append("sb.region_id = ?")
            params.append(region_id)
        if district_id is not None:
            where.append("sb.district_id = ?")
            params.append(district_id)

        having_sql = ""
        if min_listings > 0:
            if level is LocationLevel.SUBURB:
                where.append("sl.listing_count >= ?")
            else:
                having_sql = "HAVING SUM(sl.listing_count) >= ?"
            params.append(min_listings)

        if sort_by == "name":
            order_sql = f"ORDER BY {name_col} ASC, {id_col} ASC"
        else:
            order_sql = f"ORDER BY listing_count DESC, {id_col} ASC"
        params.append(limit)

        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            SELECT {select_sql}
            {_FACT_JOINS}
            WHERE {" AND ".join(where)}
            {group_sql}
            {having_sql}
            {order_sql}
            LIMIT ?
            """,
            params,
        )
        rows = await cursor.fetchall()
        return [
            LocationTotal(**dict(row), snapshot_date=snapshot["snapshot_date"])  # type: ignore[typeddict-item]
            for row in rows
        ]

    async def region_totals(
        self, code: ListingTypeCode | str, limit: int = 100
    ) -> list[LocationTotal]:
        """Listing totals per region, largest first."""
        return await self.locations_with_filters(code, LocationLevel.REGION, limit=limit)

    async def district_totals(
        self, code: ListingTypeCode | str, region_id: int, limit: int = 100
    ) -> list[LocationTotal]:
        """Listing totals for one region's districts, largest first."""
        return await self.locations_with_filters(
            code, LocationLevel.DISTRICT, region_id=region_id, limit=limit
        )

    async def suburb_totals(
        self, code: ListingTypeCode | str, district_id: int, limit: int = 100
    ) -> list[LocationTotal]:
        """Suburb fact rows for one district, largest first."""
        return await self.locations_with_filters(
            code, LocationLevel.SUBURB, district_id=district_id, limit=limit
        )

    async def totals_summary(
        self,
        code: ListingTypeCode | str,
        *,
        snapshot_date: date | None = None,
    ) -> TotalsSummary:
        """National total and distinct location counts for a snapshot.

        Args:
            code: Listing type code.
            snapshot_date: Summarize the latest snapshot on or before this
                date instead of the latest overall.

        Returns:
            The summary, zeroed when no snapshot holds data.
        """
        snapshot = await self.latest_snapshot(code, on_or_before=snapshot_date)
        if snapshot is None:
            return zero_summary()
        key = (
            "summary",
            _code_value(code),
            snapshot["id"],
            snapshot["collected_at"],
            snapshot["status"],
        )
        return await self.cache.get_or_load(key, lambda: self._load_summary(snapshot, code))

    async def _load_summary(
        self, snapshot: SnapshotRow, code: ListingTypeCode | str
    ) -> TotalsSummary:
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            SELECT
                COALESCE(SUM(sl.listing_count), 0) AS total,
                COUNT(DISTINCT r.id) AS region_count,
                COUNT(DISTINCT d.id) AS district_count,
                COUNT(DISTINCT sb.id) AS suburb_count
            {_FACT_JOINS}
            WHERE sl.snapshot_id = ?
              AND sl.listing_type_id = (SELECT id FROM listing_types WHERE code = ?)
            """,
            (snapshot["id"], _code_value(code)),
        )
        row = await cursor.fetchone()
        assert row is not None
        return TotalsSummary(
            total=row["total"],
            region_count=row["region_count"],
            district_count=row["district_count"],
            suburb_count=row["suburb_count"],
            last_updated=snapshot["collected_at"],
            snapshot_date=snapshot["snapshot_date"],
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def historical_series(
        self, code: ListingTypeCode | str, limit: int | None = None
    ) -> list[HistoricalPoint]:
        """National, regional, district and suburb values for every snapshot.

        Args:
            code: Listing type code.
            limit: Only include the N most recent snapshots holding data.

        Returns:
            Points ordered by snapshot date ascending, then national,
            regional, district and suburb rows in ascending ID order.
        """
        latest = await self.latest_snapshot(code)
        if latest is None:
            return []
        key = (
            "history",
            _code_value(code),
            latest["id"],
            latest["collected_at"],
            latest["status"],
            limit,
        )
        return await self.cache.get_or_load(key, lambda: self._load_history(code, limit))

    async def _load_history(
        self, code: ListingTypeCode | str, limit: int | None
    ) -> list[HistoricalPoint]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            WITH lt AS (
                SELECT id, code FROM listing_types WHERE code = ?
            ),
            recent AS (
                SELECT s.id, s.snapshot_date, s.collected_at
                FROM snapshots s
                WHERE EXISTS (
                    SELECT 1 FROM suburb_listings sl
                    WHERE sl.snapshot_id = s.id
                      AND sl.listing_type_id = (SELECT id FROM lt)
                )
                ORDER BY s.snapshot_date DESC
                LIMIT ?
            ),
            facts AS (
                SELECT rs.id AS snapshot_id, rs.snapshot_date, rs.collected_at,
                       sb.region_id, sb.district_id, sl.suburb_id, sl.listing_count
                FROM recent rs
                JOIN suburb_listings sl
                  ON sl.snapshot_id = rs.id AND sl.listing_type_id = (SELECT id FROM lt)
                JOIN suburbs sb ON sb.id = sl.suburb_id
            )
            SELECT * FROM (
                SELECT snapshot_id, snapshot_date, collected_at, 0 AS granularity,
                       NULL AS region_id, NULL AS district_id, NULL AS suburb_id,
                       SUM(listing_count) AS total_listings
                FROM facts GROUP BY snapshot_id, snapshot_date, collected_at
                UNION ALL
                SELECT snapshot_id, snapshot_date, collected_at, 1,
                       region_id, NULL, NULL, SUM(listing_count)
                FROM facts GROUP BY snapshot_id, snapshot_date, collected_at, region_id
                UNION ALL
                SELECT snapshot_id, snapshot_date, collected_at, 2,
                       region_id, district_id, NULL, SUM(listing_count)
                FROM facts
                GROUP BY snapshot_id, snapshot_date, collected_at, region_id, district_id
                UNION ALL
                SELECT snapshot_id, snapshot_date, collected_at, 3,
                       region_id, district_id, suburb_id, listing_count
                FROM facts
            )
            ORDER BY snapshot_date ASC, granularity ASC, region_id ASC, district_id ASC,
                     suburb_id ASC
            """,
            (_code_value(code), -1 if limit is None else limit),
        )
        rows = await cursor.fetchall()
        listing_type = _code_value(code)
        return [
            HistoricalPoint(
                snapshot_id=row["snapshot_id"],
                snapshot_date=row["snapshot_date"],
                collected_at=row["collected_at"],
                listing_type=listing_type,
                total_listings=row["total_listings"],
                region_id=row["region_id"],
                district_id=row["district_id"],
                suburb_id=row["suburb_id"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Suburb point lookups
    # ------------------------------------------------------------------

    async def suburb_detail(
        self, code: ListingTypeCode | str, suburb_id: int
    ) -> SuburbDetail | None:
        """A suburb's hierarchy and its count in the latest snapshot.

        Returns:
            The detail (count 0 when the suburb had no listings), or None if
            the suburb has never been seen.
        """
        snapshot = await self.latest_snapshot(code)
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT sb.id AS suburb_id, sb.name AS suburb_name,
                   d.id AS district_id, d.name AS district_name,
                   r.id AS region_id, r.name AS region_name,
                   COALESCE(sl.listing_count, 0) AS listing_count
            FROM suburbs sb
            JOIN districts d ON d.id = sb.district_id
            JOIN regions r ON r.id = sb.region_id
            LEFT JOIN suburb_listings sl
              ON sl.suburb_id = sb.id
             AND sl.snapshot_id = ?
             AND sl.listing_type_id = (SELECT id FROM listing_types WHERE code = ?)
            WHERE sb.id = ?
            """,
            (snapshot["id"] if snapshot else None, _code_value(code), suburb_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return SuburbDetail(
            suburb_id=row["suburb_id"],
            suburb_name=row["suburb_name"],
            district_id=row["district_id"],
            district_name=row["district_name"],
            region_id=row["region_id"],
            region_name=row["region_name"],
            listing_count=row["listing_count"],
            snapshot_date=snapshot["snapshot_date"] if snapshot else None,
        )

    async def suburb_history(
        self,
        code: ListingTypeCode | str,
        suburb_id: int,
        limit: int | None = None,
    ) -> list[SuburbHistoryPoint]:
        """A suburb's count in each snapshot holding data, zero-filled, oldest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            WITH lt AS (
                SELECT id FROM listing_types WHERE code = ?
            ),
            recent AS (
                SELECT s.id, s.snapshot_date
                FROM snapshots s
                WHERE EXISTS (
                    SELECT 1 FROM suburb_listings sl
                    WHERE sl.snapshot_id = s.id
                      AND sl.listing_type_id = (SELECT id FROM lt)
                )
                ORDER BY s.snapshot_date DESC
                LIMIT ?
            )
            SELECT rs.id AS snapshot_id, rs.snapshot_date,
                   COALESCE(sl.listing_count, 0) AS listing_count
            FROM recent rs
            LEFT JOIN suburb_listings sl
              ON sl.snapshot_id = rs.id
             AND sl.listing_type_id = (SELECT id FROM lt)
             AND sl.suburb_id = ?
            WHERE EXISTS (SELECT 1 FROM suburbs WHERE id = ?)
            ORDER BY rs.snapshot_date ASC
            """,
            (_code_value(code), -1 if limit is None else limit, suburb_id, suburb_id),
        )
        rows = await cursor.fetchall()
        return [
            SuburbHistoryPoint(
                snapshot_id=row["snapshot_id"],
                snapshot_date=row["snapshot_date"],
                listing_count=row["listing_count"],
            )
            for row in rows
        ]
