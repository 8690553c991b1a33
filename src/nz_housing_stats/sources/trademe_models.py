"""Pydantic models for the Trade Me localities JSON tree."""

from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, field_validator


def _count_or_zero(v: object) -> object:
    # Absent or null counts mean "no listings", not an error.
    return 0 if v is None else v


ListingCount = Annotated[int, BeforeValidator(_count_or_zero)]


class LocalitySuburb(BaseModel):
    """A suburb node. ``Count`` is omitted upstream when a suburb has no listings."""

    model_config = ConfigDict(extra="ignore")

    suburb_id: int = Field(validation_alias="SuburbId")
    name: str = Field(validation_alias="Name")
    count: ListingCount = Field(default=0, validation_alias="Count")


class LocalityDistrict(BaseModel):
    """A district node with its own (non-authoritative) count."""

    model_config = ConfigDict(extra="ignore")

    district_id: int = Field(validation_alias="DistrictId")
    name: str = Field(validation_alias="Name")
    count: ListingCount = Field(default=0, validation_alias="Count")
    suburbs: list[LocalitySuburb] = Field(default_factory=list, validation_alias="Suburbs")

    @field_validator("suburbs", mode="before")
    @classmethod
    def null_suburbs_to_empty(cls, v: object) -> object:
        """Treat a null child list as empty."""
        return [] if v is None else v


class LocalityRegion(BaseModel):
    """A region node.

    Region-level ``Count`` values disagree with the sum of their districts,
    so the field is kept only for diagnostics.
    """

    model_config = ConfigDict(extra="ignore")

    locality_id: int = Field(validation_alias="LocalityId")
    name: str = Field(validation_alias="Name")
    count: int | None = Field(default=None, validation_alias="Count")
    districts: list[LocalityDistrict] = Field(default_factory=list, validation_alias="Districts")

    @field_validator("districts", mode="before")
    @classmethod
    def null_districts_to_empty(cls, v: object) -> object:
        """Treat a null child list as empty."""
        return [] if v is None else v


# The endpoint returns a bare JSON array of regions
LocalitiesAdapter = TypeAdapter(list[LocalityRegion])
