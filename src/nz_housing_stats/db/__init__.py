"""Database storage for the location hierarchy and listing snapshots."""

from nz_housing_stats.db.collection_repo import HierarchySyncResult, UnknownListingTypeError
from nz_housing_stats.db.query_cache import QueryCache
from nz_housing_stats.db.row_mappers import (
    HistoricalPoint,
    LocationTotal,
    SnapshotRow,
    SuburbDetail,
    TotalsSummary,
)
from nz_housing_stats.db.storage import HousingStorage

__all__ = [
    "HierarchySyncResult",
    "HistoricalPoint",
    "HousingStorage",
    "LocationTotal",
    "QueryCache",
    "SnapshotRow",
    "SuburbDetail",
    "TotalsSummary",
    "UnknownListingTypeError",
]
