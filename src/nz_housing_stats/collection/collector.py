"""Collection cycle: fetch, reconcile and persist one listing type."""

import time
from collections.abc import Callable
from datetime import date, datetime, tzinfo
from zoneinfo import ZoneInfo

import structlog

from nz_housing_stats.collection.reconcile import reconcile_localities
from nz_housing_stats.config import Settings
from nz_housing_stats.db import HousingStorage
from nz_housing_stats.logging import get_logger
from nz_housing_stats.models import CollectionResult, ListingTypeCode, SnapshotStatus
from nz_housing_stats.sources.base import LocalitySource

logger = get_logger(__name__)

DEFAULT_TIMEZONE = ZoneInfo("Pacific/Auckland")


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


async def collect_listing_type(
    storage: HousingStorage,
    source: LocalitySource,
    code: ListingTypeCode,
    *,
    tz: tzinfo = DEFAULT_TIMEZONE,
    clock: Callable[[tzinfo], datetime] | None = None,
) -> CollectionResult:
    """Run one complete collection cycle for a listing type.

    Nothing is written until the upstream tree has been fetched and parsed,
    so a fetch failure leaves storage untouched. Hierarchy rows written
    before a later failure are kept; the snapshot is then marked failed and
    its facts for this listing type are left as they were.

    Args:
        storage: Initialized storage.
        source: Upstream locality source.
        code: Listing type to collect.
        tz: Timezone used to derive the snapshot's calendar date.
        clock: Returns the current time in a timezone (injectable for tests).

    Returns:
        The outcome. Exceptions never escape; they become ``success=False``.
    """
    now = clock or (lambda zone: datetime.now(zone))
    started = time.perf_counter()
    snapshot_id: int | None = None
    snapshot_date: date | None = None

    with structlog.contextvars.bound_contextvars(listing_type=code.value):
        logger.info("collection_started")
        try:
            listing_type_id = await storage.get_listing_type_id(code)

            regions = await source.fetch_localities(code)
            reconciled = reconcile_localities(regions)
            if reconciled.sentinel_regions_dropped:
                logger.debug("sentinel_regions_dropped", count=reconciled.sentinel_regions_dropped)

            await storage.ensure_hierarchy(
                reconciled.regions, reconciled.districts, reconciled.suburbs
            )

            collected_at = now(tz)
            snapshot_date = collected_at.date()
            snapshot_id = await storage.upsert_snapshot(snapshot_date, collected_at)

            records = await storage.replace_facts(snapshot_id, listing_type_id, reconciled.facts)

            duration_ms = _elapsed_ms(started)
            await storage.finish_snapshot(
                snapshot_id, SnapshotStatus.COMPLETED, processing_time_ms=duration_ms
            )
        except Exception as e:
            duration_ms = _elapsed_ms(started)
            logger.error(
                "collection_failed",
                snapshot_id=snapshot_id,
                duration_ms=duration_ms,
                error=str(e),
                exc_info=True,
            )
            if snapshot_id is not None:
                try:
                    await storage.finish_snapshot(
                        snapshot_id, SnapshotStatus.FAILED, processing_time_ms=duration_ms
                    )
                except Exception:
                    logger.error(
                        "snapshot_status_update_failed", snapshot_id=snapshot_id, exc_info=True
                    )
            return CollectionResult(
                listing_type=code.value,
                success=False,
                snapshot_date=snapshot_date,
                duration_ms=duration_ms,
                error=str(e) or type(e).__name__,
            )
        finally:
            storage.clear_query_cache()

        logger.info(
            "collection_complete",
            snapshot_id=snapshot_id,
            snapshot_date=snapshot_date.isoformat(),
            records=records,
            total_listings=reconciled.total_listings,
            discrepancies=len(reconciled.discrepancies),
            duration_ms=duration_ms,
        )
        return CollectionResult(
            listing_type=code.value,
            success=True,
            snapshot_date=snapshot_date,
            total_records=records,
            total_listings=reconciled.total_listings,
            duration_ms=duration_ms,
        )


async def collect_all(
    settings: Settings,
    storage: HousingStorage,
    source: LocalitySource,
) -> list[CollectionResult]:
    """Collect every configured listing type, one after another.

    A failure in one category does not stop the others.
    """
    tz = settings.get_timezone()
    results: list[CollectionResult] = []
    for code in settings.get_listing_types():
        results.append(await collect_listing_type(storage, source, code, tz=tz))

    logger.info(
        "collection_run_complete",
        succeeded=sum(1 for r in results if r.success),
        failed=sum(1 for r in results if not r.success),
    )
    return results
