"""Property-based tests using Hypothesis.

Tests invariants of reconciliation and of the persisted roll-ups: counts are
sparse, every level sums to the suburb total, and the sentinel region never
becomes a location.
"""

from typing import Any

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from nz_housing_stats.collection import collect_listing_type, reconcile_localities
from nz_housing_stats.db import HousingStorage
from nz_housing_stats.models import ALL_LOCATIONS_LOCALITY_ID, ListingTypeCode, LocationLevel
from nz_housing_stats.sources import LocalitiesAdapter, LocalityRegion, LocalitySource

# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

# None means the upstream omitted the count
suburb_counts = st.one_of(st.none(), st.integers(min_value=0, max_value=500))


@st.composite
def locality_payloads(draw: st.DrawFn) -> list[dict[str, Any]]:
    """A raw locality tree with globally unique IDs, optionally led by the sentinel."""
    next_id = iter(range(1, 10_000))
    regions: list[dict[str, Any]] = []
    for _ in range(draw(st.integers(min_value=0, max_value=3))):
        districts = []
        for _ in range(draw(st.integers(min_value=0, max_value=3))):
            suburbs = []
            for _ in range(draw(st.integers(min_value=0, max_value=4))):
                suburb_id = next(next_id)
                suburb: dict[str, Any] = {"SuburbId": suburb_id, "Name": f"Suburb {suburb_id}"}
                count = draw(suburb_counts)
                if count is not None:
                    suburb["Count"] = count
                suburbs.append(suburb)
            district_id = next(next_id)
            districts.append(
                {
                    "DistrictId": district_id,
                    "Name": f"District {district_id}",
                    # District counts are noisy upstream and must not matter
                    "Count": draw(st.integers(min_value=0, max_value=2000)),
                    "Suburbs": suburbs,
                }
            )
        region_id = next(next_id)
        regions.append(
            {
                "LocalityId": region_id,
                "Name": f"Region {region_id}",
                "Count": draw(st.one_of(st.none(), st.integers(min_value=0, max_value=5000))),
                "Districts": districts,
            }
        )
    if draw(st.booleans()):
        sentinel = ALL_LOCATIONS_LOCALITY_ID
        regions.insert(
            0,
            {
                "LocalityId": sentinel,
                "Name": "All",
                "Count": 1,
                "Districts": [
                    {
                        "DistrictId": sentinel,
                        "Name": "All",
                        "Count": 1,
                        "Suburbs": [{"SuburbId": sentinel, "Name": "All", "Count": 1}],
                    }
                ],
            },
        )
    return regions


def positive_suburb_counts(payload: list[dict[str, Any]]) -> dict[int, int]:
    return {
        suburb["SuburbId"]: suburb["Count"]
        for region in payload
        if region["LocalityId"] != ALL_LOCATIONS_LOCALITY_ID
        for district in region["Districts"]
        for suburb in district["Suburbs"]
        if suburb.get("Count", 0) > 0
    }


class PayloadSource(LocalitySource):
    def __init__(self, payload: list[dict[str, Any]]) -> None:
        self.payload = payload

    async def fetch_localities(self, listing_type: ListingTypeCode) -> list[LocalityRegion]:
        return LocalitiesAdapter.validate_python(self.payload)

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# reconcile_localities
# ---------------------------------------------------------------------------


class TestReconcileProperties:
    @given(locality_payloads())
    def test_facts_are_positive_suburb_counts(self, payload: list[dict[str, Any]]) -> None:
        result = reconcile_localities(LocalitiesAdapter.validate_python(payload))
        expected = positive_suburb_counts(payload)
        assert {f.suburb_id: f.listing_count for f in result.facts} == expected
        assert result.total_listings == sum(expected.values())

    @given(locality_payloads())
    def test_sentinel_never_a_location(self, payload: list[dict[str, Any]]) -> None:
        result = reconcile_localities(LocalitiesAdapter.validate_python(payload))
        assert ALL_LOCATIONS_LOCALITY_ID not in {r.id for r in result.regions}
        assert ALL_LOCATIONS_LOCALITY_ID not in {s.id for s in result.suburbs}

    @given(locality_payloads())
    def test_every_suburb_kept_in_hierarchy(self, payload: list[dict[str, Any]]) -> None:
        result = reconcile_localities(LocalitiesAdapter.validate_python(payload))
        suburb_ids = {s.id for s in result.suburbs}
        assert {f.suburb_id for f in result.facts} <= suburb_ids
        district_regions = {d.id: d.region_id for d in result.districts}
        for suburb in result.suburbs:
            assert suburb.region_id == district_regions[suburb.district_id]

    @given(locality_payloads())
    def test_breakdown_sums_match_totals(self, payload: list[dict[str, Any]]) -> None:
        result = reconcile_localities(LocalitiesAdapter.validate_python(payload))
        assert sum(r.suburb_sum for r in result.breakdown) == result.total_listings
        assert sum(r.district_sum for r in result.breakdown) == result.district_total


# ---------------------------------------------------------------------------
# Persisted roll-ups
# ---------------------------------------------------------------------------


class TestPersistedRollupProperties:
    @pytest.mark.asyncio
    @settings(deadline=None)
    @given(locality_payloads())
    async def test_levels_consistent_after_collection(
        self, payload: list[dict[str, Any]]
    ) -> None:
        # Built per example: function-scoped fixtures are not reset between examples
        storage = HousingStorage(":memory:")
        await storage.initialize()
        try:
            code = ListingTypeCode.HOUSES_TO_BUY
            result = await collect_listing_type(storage, PayloadSource(payload), code)
            assert result.success

            expected = positive_suburb_counts(payload)
            summary = await storage.totals_summary(code)
            assert summary["total"] == sum(expected.values())
            assert summary["suburb_count"] == len(expected)

            regions = await storage.region_totals(code, limit=1000)
            assert sum(r["listing_count"] for r in regions) == summary["total"]
            assert all(r["listing_count"] > 0 for r in regions)

            districts = await storage.locations_with_filters(
                code, LocationLevel.DISTRICT, limit=1000
            )
            assert sum(d["listing_count"] for d in districts) == summary["total"]

            suburbs = await storage.locations_with_filters(
                code, LocationLevel.SUBURB, limit=1000
            )
            assert {s["suburb_id"]: s["listing_count"] for s in suburbs} == expected
        finally:
            await storage.close()
