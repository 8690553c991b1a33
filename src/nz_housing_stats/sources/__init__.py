"""Upstream sources of the locality tree."""

from nz_housing_stats.sources.base import LocalitySource
from nz_housing_stats.sources.trademe import TradeMeLocalitiesSource, UpstreamFetchError
from nz_housing_stats.sources.trademe_models import (
    LocalitiesAdapter,
    LocalityDistrict,
    LocalityRegion,
    LocalitySuburb,
)

__all__ = [
    "LocalitiesAdapter",
    "LocalityDistrict",
    "LocalityRegion",
    "LocalitySource",
    "LocalitySuburb",
    "TradeMeLocalitiesSource",
    "UpstreamFetchError",
]
