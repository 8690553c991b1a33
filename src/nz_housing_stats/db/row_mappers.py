"""Result row shapes returned by the storage layer.

All query results are plain dicts so the presentation layer never sees
aiosqlite row objects.
"""

from __future__ import annotations

from typing import TypedDict

import aiosqlite


class SnapshotRow(TypedDict):
    """A row of the snapshots table."""

    id: int
    snapshot_date: str
    collected_at: str
    status: str
    processing_time_ms: int | None


class SnapshotListItem(SnapshotRow):
    """Snapshot row plus the number of fact rows attached to it."""

    fact_rows: int


class LocationTotal(TypedDict):
    """One aggregated location at region, district or suburb level.

    The shape is identical at every level; fields that do not apply to a
    level are None (e.g. ``suburb_id`` on a region row, ``suburb_count`` on a
    suburb row).
    """

    location_type: str
    region_id: int
    region_name: str
    district_id: int | None
    district_name: str | None
    suburb_id: int | None
    suburb_name: str | None
    listing_count: int
    suburb_count: int | None
    snapshot_date: str


class TotalsSummary(TypedDict):
    """National totals for one snapshot, all derived from suburb facts."""

    total: int
    region_count: int
    district_count: int
    suburb_count: int
    last_updated: str | None
    snapshot_date: str | None


class HistoricalPoint(TypedDict):
    """One value of the multi-granularity historical series.

    Granularity is encoded by which IDs are set: none (national),
    ``region_id`` (regional), ``region_id`` + ``district_id`` (district) or
    all three (suburb).
    """

    snapshot_id: int
    snapshot_date: str
    collected_at: str
    listing_type: str
    total_listings: int
    region_id: int | None
    district_id: int | None
    suburb_id: int | None


class SuburbDetail(TypedDict):
    """Point lookup of a suburb with its hierarchy and latest count."""

    suburb_id: int
    suburb_name: str
    district_id: int
    district_name: str
    region_id: int
    region_name: str
    listing_count: int
    snapshot_date: str | None


class SuburbHistoryPoint(TypedDict):
    """A suburb's count in one snapshot (0 when it had no fact row)."""

    snapshot_id: int
    snapshot_date: str
    listing_count: int


def row_to_snapshot(row: aiosqlite.Row) -> SnapshotRow:
    """Convert a snapshots row to a SnapshotRow dict."""
    return SnapshotRow(
        id=row["id"],
        snapshot_date=row["snapshot_date"],
        collected_at=row["collected_at"],
        status=row["status"],
        processing_time_ms=row["processing_time_ms"],
    )


def zero_summary() -> TotalsSummary:
    """Summary returned when no snapshot holds data for a listing type."""
    return TotalsSummary(
        total=0,
        region_count=0,
        district_count=0,
        suburb_count=0,
        last_updated=None,
        snapshot_date=None,
    )
