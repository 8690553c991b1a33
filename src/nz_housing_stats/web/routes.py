"""JSON API routes over the aggregate queries."""

from typing import Literal

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from nz_housing_stats.db import HousingStorage
from nz_housing_stats.models import ListingTypeCode, LocationLevel

router = APIRouter()

MAX_LIMIT = 1000


def _get_storage(request: Request) -> HousingStorage:
    return request.app.state.storage  # type: ignore[no-any-return]


def _parse_code(code: str) -> ListingTypeCode | None:
    try:
        return ListingTypeCode(code.upper())
    except ValueError:
        return None


def _unknown_code(code: str) -> JSONResponse:
    return JSONResponse({"error": f"unknown listing type: {code}"}, status_code=404)


def _clamp(limit: int) -> int:
    return max(1, min(MAX_LIMIT, limit))


@router.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})


@router.get("/api/snapshots")
async def list_snapshots(request: Request, limit: int = 10) -> JSONResponse:
    """Recent snapshots with status and fact row counts."""
    snapshots = await _get_storage(request).recent_snapshots(_clamp(limit))
    return JSONResponse({"snapshots": snapshots})


@router.get("/api/{code}/summary")
async def summary(request: Request, code: str) -> JSONResponse:
    """National total and location counts for the latest snapshot."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    result = await _get_storage(request).totals_summary(listing_type)
    return JSONResponse({"listing_type": listing_type.value, **result})


@router.get("/api/{code}/regions")
async def regions(request: Request, code: str, limit: int = 100) -> JSONResponse:
    """Per-region totals, largest first."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    rows = await _get_storage(request).region_totals(listing_type, _clamp(limit))
    return JSONResponse({"listing_type": listing_type.value, "locations": rows})


@router.get("/api/{code}/regions/{region_id}/districts")
async def region_districts(
    request: Request, code: str, region_id: int, limit: int = 100
) -> JSONResponse:
    """Per-district totals within a region."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    rows = await _get_storage(request).district_totals(listing_type, region_id, _clamp(limit))
    return JSONResponse({"listing_type": listing_type.value, "locations": rows})


@router.get("/api/{code}/districts/{district_id}/suburbs")
async def district_suburbs(
    request: Request, code: str, district_id: int, limit: int = 100
) -> JSONResponse:
    """Suburb counts within a district."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    rows = await _get_storage(request).suburb_totals(listing_type, district_id, _clamp(limit))
    return JSONResponse({"listing_type": listing_type.value, "locations": rows})


@router.get("/api/{code}/locations")
async def locations(
    request: Request,
    code: str,
    level: LocationLevel = LocationLevel.REGION,
    region_id: int | None = None,
    district_id: int | None = None,
    min_listings: int = 0,
    limit: int = 100,
    sort_by: Literal["listing_count", "name"] = "listing_count",
) -> JSONResponse:
    """Level-parameterized location totals with optional filters."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    rows = await _get_storage(request).locations_with_filters(
        listing_type,
        level,
        region_id=region_id,
        district_id=district_id,
        min_listings=max(0, min_listings),
        limit=_clamp(limit),
        sort_by=sort_by,
    )
    return JSONResponse(
        {"listing_type": listing_type.value, "level": level.value, "locations": rows}
    )


@router.get("/api/{code}/history")
async def history(request: Request, code: str, limit: int | None = None) -> JSONResponse:
    """National, regional, district and suburb values per snapshot."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    points = await _get_storage(request).historical_series(
        listing_type, None if limit is None else _clamp(limit)
    )
    return JSONResponse({"listing_type": listing_type.value, "points": points})


@router.get("/api/{code}/suburbs/{suburb_id}")
async def suburb_detail(request: Request, code: str, suburb_id: int) -> JSONResponse:
    """A suburb's hierarchy and latest count."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    detail = await _get_storage(request).suburb_detail(listing_type, suburb_id)
    if detail is None:
        return JSONResponse({"error": "suburb not found"}, status_code=404)
    return JSONResponse({"listing_type": listing_type.value, **detail})


@router.get("/api/{code}/suburbs/{suburb_id}/history")
async def suburb_history(
    request: Request, code: str, suburb_id: int, limit: int | None = None
) -> JSONResponse:
    """A suburb's zero-filled count per snapshot."""
    listing_type = _parse_code(code)
    if listing_type is None:
        return _unknown_code(code)
    points = await _get_storage(request).suburb_history(
        listing_type, suburb_id, None if limit is None else _clamp(limit)
    )
    return JSONResponse(
        {"listing_type": listing_type.value, "suburb_id": suburb_id, "points": points}
    )
