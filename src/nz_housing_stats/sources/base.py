"""Base interface for upstream locality sources."""

from abc import ABC, abstractmethod

from nz_housing_stats.models import ListingTypeCode
from nz_housing_stats.sources.trademe_models import LocalityRegion


class LocalitySource(ABC):
    """Abstract source of the region > district > suburb tree with listing counts."""

    @abstractmethod
    async def fetch_localities(self, listing_type: ListingTypeCode) -> list[LocalityRegion]:
        """Fetch the full locality tree for a listing type.

        Args:
            listing_type: Listing category to fetch counts for.

        Returns:
            Region nodes as delivered upstream (sentinel not yet filtered).

        Raises:
            UpstreamFetchError: If the source is unreachable or answers with
                a non-success status.
            pydantic.ValidationError: If the payload does not match the
                expected shape.
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Clean up source resources (e.g. HTTP clients)."""
