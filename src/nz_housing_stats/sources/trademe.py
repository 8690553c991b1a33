"""Trade Me localities client."""

import httpx

from nz_housing_stats.logging import get_logger
from nz_housing_stats.models import ListingTypeCode
from nz_housing_stats.sources.base import LocalitySource
from nz_housing_stats.sources.trademe_models import LocalitiesAdapter, LocalityRegion

logger = get_logger(__name__)

DEFAULT_LOCALITIES_URL = "https://api.trademe.co.nz/v1/localities.json"
DEFAULT_USER_AGENT = "NZHousingStats/1.0"
DEFAULT_TIMEOUT = 30.0


class UpstreamFetchError(Exception):
    """Raised when the localities endpoint cannot be fetched."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TradeMeLocalitiesSource(LocalitySource):
    """Fetches the locality tree with per-node listing counts in a single GET."""

    def __init__(
        self,
        *,
        url: str = DEFAULT_LOCALITIES_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._headers = {"Accept": "application/json", "User-Agent": user_agent}
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def fetch_localities(self, listing_type: ListingTypeCode) -> list[LocalityRegion]:
        """GET the locality tree for ``listing_type``."""
        client = self._get_client()
        params = {"with_counts": "true", "listing_type": listing_type.value}
        try:
            resp = await client.get(
                self._url, params=params, headers=self._headers, timeout=self._timeout
            )
        except httpx.TimeoutException as e:
            raise UpstreamFetchError(f"Localities request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamFetchError(f"Localities request failed: {e}") from e

        if resp.status_code != 200:
            raise UpstreamFetchError(
                f"API failed: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )

        regions = LocalitiesAdapter.validate_json(resp.content)
        logger.debug(
            "localities_fetched",
            listing_type=listing_type.value,
            regions=len(regions),
            bytes=len(resp.content),
        )
        return regions

    async def close(self) -> None:
        """Close the HTTP client if this source created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
