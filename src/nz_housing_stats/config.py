"""Application configuration using pydantic-settings."""

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nz_housing_stats.models import ListingTypeCode


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NZ_HOUSING_STATS_",
        extra="ignore",
    )

    # Upstream localities API
    localities_url: str = Field(
        default="https://api.trademe.co.nz/v1/localities.json",
        description="Localities endpoint returning the region/district/suburb tree",
    )
    user_agent: str = Field(default="NZHousingStats/1.0")
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout for the upstream fetch; a timed-out fetch fails the cycle",
    )

    # Collection
    listing_types: str = Field(
        default="HOUSES_TO_BUY,HOUSES_TO_RENT",
        description="Comma-separated listing type codes to collect",
    )
    snapshot_timezone: str = Field(
        default="Pacific/Auckland",
        description="Timezone used to derive the calendar date of a snapshot",
    )
    collection_interval_minutes: int = Field(
        default=1440,
        ge=1,
        description="Minutes between collection runs in serve mode",
    )

    # Query cache
    query_cache_ttl_seconds: float = Field(default=300.0, ge=0)
    query_cache_max_entries: int = Field(default=256, ge=1)

    # Web API
    web_port: int = Field(default=8000, description="Web server port")
    web_host: str = Field(default="0.0.0.0", description="Web server host")

    # Database
    database_path: str = Field(default="data/nzhousingstats.db")

    @field_validator("snapshot_timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        """Reject unknown IANA timezone names at load time."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def data_dir(self) -> str:
        """Return the directory containing the database."""
        return str(Path(self.database_path).parent)

    def get_listing_types(self) -> list[ListingTypeCode]:
        """Parse listing_types into ListingTypeCode values, preserving order."""
        codes: list[ListingTypeCode] = []
        for raw in self.listing_types.split(","):
            code = raw.strip().upper()
            if code and ListingTypeCode(code) not in codes:
                codes.append(ListingTypeCode(code))
        return codes

    def get_timezone(self) -> ZoneInfo:
        """Timezone for snapshot dates."""
        return ZoneInfo(self.snapshot_timezone)
