"""Collection cycle and locality reconciliation."""

from nz_housing_stats.collection.collector import collect_all, collect_listing_type
from nz_housing_stats.collection.reconcile import (
    CountDiscrepancy,
    ReconciledLocalities,
    RegionBreakdown,
    drop_sentinel_regions,
    reconcile_localities,
)

__all__ = [
    "CountDiscrepancy",
    "ReconciledLocalities",
    "RegionBreakdown",
    "collect_all",
    "collect_listing_type",
    "drop_sentinel_regions",
    "reconcile_localities",
]
