"""Shared pytest fixtures."""

import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, tzinfo
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio
import structlog
from hypothesis import HealthCheck, settings

from nz_housing_stats.config import Settings
from nz_housing_stats.db import HousingStorage
from nz_housing_stats.models import ListingTypeCode
from nz_housing_stats.sources import LocalitiesAdapter, LocalityRegion, LocalitySource

# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _restore_structlog_config() -> Any:
    """Undo logging configuration done by a test (it binds pytest's captured stderr)."""
    config = structlog.get_config()
    yield
    structlog.configure(**config)


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )


class StaticLocalitySource(LocalitySource):
    """Serves canned locality payloads; an Exception payload is raised instead."""

    def __init__(self, payloads: dict[ListingTypeCode, Any]) -> None:
        self.payloads = payloads
        self.calls: list[ListingTypeCode] = []
        self.closed = False

    async def fetch_localities(self, listing_type: ListingTypeCode) -> list[LocalityRegion]:
        self.calls.append(listing_type)
        payload = self.payloads[listing_type]
        if isinstance(payload, Exception):
            raise payload
        return LocalitiesAdapter.validate_python(payload)

    async def close(self) -> None:
        self.closed = True


def _region(
    region_id: int,
    name: str,
    districts: list[dict[str, Any]],
    count: int | None = None,
) -> dict[str, Any]:
    return {"LocalityId": region_id, "Name": name, "Count": count, "Districts": districts}


def _district(
    district_id: int,
    name: str,
    suburbs: list[dict[str, Any]],
    count: int | None = None,
) -> dict[str, Any]:
    if count is None:
        count = sum(s.get("Count") or 0 for s in suburbs)
    return {"DistrictId": district_id, "Name": name, "Count": count, "Suburbs": suburbs}


def _suburb(suburb_id: int, name: str, count: int | None = None) -> dict[str, Any]:
    suburb: dict[str, Any] = {"SuburbId": suburb_id, "Name": name}
    if count is not None:
        suburb["Count"] = count
    return suburb


@pytest.fixture
def payload() -> SimpleNamespace:
    """Builders for raw upstream locality nodes."""
    return SimpleNamespace(region=_region, district=_district, suburb=_suburb)


@pytest.fixture
def northland_payload() -> list[dict[str, Any]]:
    """One region, one district, two suburbs summing to 400, plus the sentinel."""
    return [
        _region(
            100,
            "All",
            [_district(100, "All", [_suburb(100, "All", 400)])],
            count=400,
        ),
        _region(
            9,
            "Northland",
            [
                _district(
                    1,
                    "Far North",
                    [_suburb(1736, "Kerikeri", 354), _suburb(1737, "Paihia", 46)],
                    count=400,
                )
            ],
            count=412,
        ),
    ]


@pytest.fixture
def two_region_payload() -> list[dict[str, Any]]:
    """Two regions with several districts, zero-count and count-less suburbs."""
    return [
        _region(
            1,
            "Auckland",
            [
                _district(
                    7,
                    "Auckland City",
                    [
                        _suburb(101, "Ponsonby", 120),
                        _suburb(102, "Grey Lynn", 80),
                        _suburb(103, "Herne Bay", 0),
                    ],
                ),
                _district(
                    8,
                    "North Shore City",
                    [_suburb(201, "Takapuna", 200), _suburb(202, "Devonport")],
                ),
            ],
        ),
        _region(
            15,
            "Wellington",
            [
                _district(
                    47,
                    "Wellington City",
                    [_suburb(301, "Te Aro", 150), _suburb(302, "Kelburn", 50)],
                ),
            ],
        ),
    ]


@pytest.fixture
def static_source() -> Callable[..., StaticLocalitySource]:
    """Factory for a source serving the same payload for every listing type."""

    def _make(payload: Any = None, **per_type: Any) -> StaticLocalitySource:
        payloads: dict[ListingTypeCode, Any] = {t: payload for t in ListingTypeCode}
        for code, value in per_type.items():
            payloads[ListingTypeCode(code)] = value
        return StaticLocalitySource(payloads)

    return _make


@pytest.fixture
def fixed_clock() -> Callable[[str], Callable[[tzinfo], datetime]]:
    """Factory for a clock returning a fixed ISO timestamp in the requested zone."""

    def _make(iso: str) -> Callable[[tzinfo], datetime]:
        moment = datetime.fromisoformat(iso)
        return lambda zone: moment.astimezone(zone)

    return _make


@pytest_asyncio.fixture
async def storage() -> AsyncGenerator[HousingStorage, None]:
    """Create an in-memory storage instance."""
    storage = HousingStorage(":memory:")
    await storage.initialize()
    yield storage
    await storage.close()
