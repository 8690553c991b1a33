"""Reconcile the upstream locality tree into hierarchy rows and suburb facts.

Upstream reports listing counts at every level, but the levels disagree:
region counts drift from the sum of their districts, while district sums and
suburb sums have been observed to match. Suburb counts are therefore the only
counts kept. Region and district totals are always re-derived from suburb
facts at query time, so two levels can never disagree in stored data.
"""

from dataclasses import dataclass, field

from nz_housing_stats.logging import get_logger
from nz_housing_stats.models import (
    ALL_LOCATIONS_LOCALITY_ID,
    District,
    Region,
    Suburb,
    SuburbFact,
)
from nz_housing_stats.sources.trademe_models import LocalityRegion

logger = get_logger(__name__)


@dataclass(frozen=True)
class CountDiscrepancy:
    """A district whose own upstream count differs from its suburb sum."""

    district_id: int
    district_name: str
    region_id: int
    reported_count: int
    suburb_sum: int

    @property
    def difference(self) -> int:
        return self.reported_count - self.suburb_sum


@dataclass(frozen=True)
class RegionBreakdown:
    """Per-region totals at each upstream level, for integrity reporting."""

    region_id: int
    name: str
    reported_count: int | None
    district_sum: int
    suburb_sum: int
    district_count: int
    suburbs_with_listings: int


@dataclass
class ReconciledLocalities:
    """Hierarchy rows and sparse suburb facts extracted from one payload."""

    regions: list[Region] = field(default_factory=list)
    districts: list[District] = field(default_factory=list)
    suburbs: list[Suburb] = field(default_factory=list)
    facts: list[SuburbFact] = field(default_factory=list)
    total_listings: int = 0
    district_total: int = 0
    sentinel_regions_dropped: int = 0
    discrepancies: list[CountDiscrepancy] = field(default_factory=list)
    breakdown: list[RegionBreakdown] = field(default_factory=list)

    @property
    def levels_agree(self) -> bool:
        """True when the upstream district sum equals the suburb sum."""
        return self.district_total == self.total_listings


def drop_sentinel_regions(regions: list[LocalityRegion]) -> list[LocalityRegion]:
    """Remove the "all locations" pseudo-region from a top-level node list."""
    return [r for r in regions if r.locality_id != ALL_LOCATIONS_LOCALITY_ID]


def reconcile_localities(regions: list[LocalityRegion]) -> ReconciledLocalities:
    """Walk the locality tree and keep suburb-level counts as ground truth.

    Every region, district and suburb encountered becomes a hierarchy row,
    whatever its count. Only suburbs with a strictly positive count become
    facts. Region and district counts are read solely to report
    discrepancies; they never reach the result's facts or totals.

    When the same suburb ID appears more than once, the last occurrence wins
    for both its hierarchy row and its fact.

    Args:
        regions: Region nodes exactly as delivered upstream.

    Returns:
        Reconciled hierarchy rows, facts and diagnostics.
    """
    real_regions = drop_sentinel_regions(regions)
    result = ReconciledLocalities(sentinel_regions_dropped=len(regions) - len(real_regions))

    region_rows: dict[int, Region] = {}
    district_rows: dict[int, District] = {}
    suburb_rows: dict[int, Suburb] = {}
    counts: dict[int, int] = {}

    for region in real_regions:
        region_rows[region.locality_id] = Region(id=region.locality_id, name=region.name)
        region_district_sum = 0
        region_suburb_sum = 0
        region_suburbs_with_listings = 0

        for district in region.districts:
            district_rows[district.district_id] = District(
                id=district.district_id,
                name=district.name,
                region_id=region.locality_id,
            )
            district_suburb_sum = 0

            for suburb in district.suburbs:
                if suburb.suburb_id in suburb_rows:
                    logger.warning(
                        "duplicate_suburb_id",
                        suburb_id=suburb.suburb_id,
                        district_id=district.district_id,
                    )
                suburb_rows[suburb.suburb_id] = Suburb(
                    id=suburb.suburb_id,
                    name=suburb.name,
                    district_id=district.district_id,
                    region_id=region.locality_id,
                )
                if suburb.count > 0:
                    counts[suburb.suburb_id] = suburb.count
                    district_suburb_sum += suburb.count
                    region_suburbs_with_listings += 1
                else:
                    counts.pop(suburb.suburb_id, None)

            reported = max(district.count, 0)
            result.district_total += reported
            region_district_sum += reported
            region_suburb_sum += district_suburb_sum
            if reported != district_suburb_sum:
                result.discrepancies.append(
                    CountDiscrepancy(
                        district_id=district.district_id,
                        district_name=district.name,
                        region_id=region.locality_id,
                        reported_count=reported,
                        suburb_sum=district_suburb_sum,
                    )
                )

        result.breakdown.append(
            RegionBreakdown(
                region_id=region.locality_id,
                name=region.name,
                reported_count=region.count,
                district_sum=region_district_sum,
                suburb_sum=region_suburb_sum,
                district_count=len(region.districts),
                suburbs_with_listings=region_suburbs_with_listings,
            )
        )

    result.regions = list(region_rows.values())
    result.districts = list(district_rows.values())
    result.suburbs = list(suburb_rows.values())
    result.facts = [
        SuburbFact(suburb_id=suburb_id, listing_count=count) for suburb_id, count in counts.items()
    ]
    result.total_listings = sum(counts.values())

    for d in result.discrepancies:
        logger.warning(
            "district_count_mismatch",
            district_id=d.district_id,
            district=d.district_name,
            reported=d.reported_count,
            suburb_sum=d.suburb_sum,
        )

    return result
