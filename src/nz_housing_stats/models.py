"""Pydantic models for the location hierarchy, snapshots and collection results."""

from datetime import date
from enum import Enum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

# Upstream "all locations" pseudo-region. It aggregates every real region and
# must never be stored or counted.
ALL_LOCATIONS_LOCALITY_ID: Final = 100


class ListingTypeCode(str, Enum):
    """Residential listing categories tracked by the collector."""

    HOUSES_TO_BUY = "HOUSES_TO_BUY"
    HOUSES_TO_RENT = "HOUSES_TO_RENT"

    @property
    def display_name(self) -> str:
        """Human-readable display name for this listing type."""
        return _LISTING_TYPE_NAMES[self.value]

    @property
    def category(self) -> str:
        """Category group this listing type belongs to."""
        return "RESIDENTIAL"


_LISTING_TYPE_NAMES: dict[str, str] = {
    "HOUSES_TO_BUY": "Houses for Sale",
    "HOUSES_TO_RENT": "Houses for Rent",
}

assert set(_LISTING_TYPE_NAMES) == {t.value for t in ListingTypeCode}


class SnapshotStatus(str, Enum):
    """Lifecycle states of a dated collection snapshot."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class LocationLevel(str, Enum):
    """Levels of the region > district > suburb hierarchy."""

    REGION = "region"
    DISTRICT = "district"
    SUBURB = "suburb"


class Region(BaseModel):
    """A top-level region, identified by its upstream locality ID."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Upstream LocalityId")
    name: str


class District(BaseModel):
    """A district within a region."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Upstream DistrictId")
    name: str
    region_id: int


class Suburb(BaseModel):
    """A suburb within a district.

    ``region_id`` duplicates the district's region so suburb-level queries
    can group by region without joining through districts.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Upstream SuburbId")
    name: str
    district_id: int
    region_id: int


class SuburbFact(BaseModel):
    """A positive listing count for one suburb in one snapshot."""

    model_config = ConfigDict(frozen=True)

    suburb_id: int
    listing_count: int = Field(gt=0)


class CollectionResult(BaseModel):
    """Outcome of one collection cycle for a listing type."""

    model_config = ConfigDict(frozen=True)

    listing_type: str
    success: bool
    snapshot_date: date | None = None
    total_records: int = Field(default=0, ge=0, description="Fact rows written")
    total_listings: int = Field(default=0, ge=0, description="Sum of suburb counts")
    duration_ms: int | None = None
    error: str | None = None
