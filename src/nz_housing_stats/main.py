"""Main entry point for the NZ housing listing-count collector."""

import argparse
import asyncio
import sys

from nz_housing_stats.collection import collect_all, reconcile_localities
from nz_housing_stats.config import Settings
from nz_housing_stats.db import HousingStorage, QueryCache
from nz_housing_stats.logging import configure_logging, get_logger
from nz_housing_stats.models import CollectionResult, ListingTypeCode
from nz_housing_stats.sources import TradeMeLocalitiesSource, UpstreamFetchError

logger = get_logger(__name__)


def build_storage(settings: Settings) -> HousingStorage:
    """Create storage with the configured query cache."""
    cache = QueryCache(
        ttl_seconds=settings.query_cache_ttl_seconds,
        max_entries=settings.query_cache_max_entries,
    )
    return HousingStorage(settings.database_path, cache=cache)


def build_source(settings: Settings) -> TradeMeLocalitiesSource:
    """Create the upstream localities client."""
    return TradeMeLocalitiesSource(
        url=settings.localities_url,
        user_agent=settings.user_agent,
        timeout=settings.request_timeout_seconds,
    )


async def run_collection(settings: Settings) -> list[CollectionResult]:
    """Run one collection cycle for every configured listing type.

    Args:
        settings: Application settings.

    Returns:
        One result per listing type, in configuration order.
    """
    storage = build_storage(settings)
    await storage.initialize()
    source = build_source(settings)

    try:
        return await collect_all(settings, storage, source)
    finally:
        await source.close()
        await storage.close()


async def run_validate(settings: Settings, code: ListingTypeCode) -> bool:
    """Fetch one listing type and report level totals without persisting.

    Returns:
        True when upstream district counts agree with suburb sums.
    """
    source = build_source(settings)
    try:
        regions = await source.fetch_localities(code)
    except UpstreamFetchError as e:
        logger.error("validation_fetch_failed", listing_type=code.value, error=str(e))
        print(f"Error: {e}")
        return False
    finally:
        await source.close()

    reconciled = reconcile_localities(regions)

    print(f"\n{'=' * 60}")
    print(f"Upstream validation: {code.value} ({code.display_name})")
    print(f"{'=' * 60}\n")
    print(f"Sentinel regions filtered: {reconciled.sentinel_regions_dropped}")
    print(
        f"Regions: {len(reconciled.regions)} | Districts: {len(reconciled.districts)} "
        f"| Suburbs: {len(reconciled.suburbs)} | Facts: {len(reconciled.facts)}"
    )
    print(f"District count sum: {reconciled.district_total}")
    print(f"Suburb count sum:   {reconciled.total_listings}")
    print()

    for region in reconciled.breakdown:
        reported = "-" if region.reported_count is None else str(region.reported_count)
        print(
            f"[{region.region_id}] {region.name}: reported {reported}, "
            f"districts {region.district_sum}, suburbs {region.suburb_sum} "
            f"({region.suburbs_with_listings} suburbs with listings)"
        )

    if reconciled.discrepancies:
        print(f"\n{len(reconciled.discrepancies)} district(s) disagree with their suburbs:")
        for d in reconciled.discrepancies:
            print(
                f"  [{d.district_id}] {d.district_name}: reported {d.reported_count}, "
                f"suburbs {d.suburb_sum} (diff {d.difference:+d})"
            )
    else:
        print("\nAll district counts match their suburb sums.")

    return reconciled.levels_agree


async def run_migrate_legacy(settings: Settings) -> bool:
    """Convert legacy flat tables in the configured database.

    Returns:
        True when the migrated total matches the legacy suburb total.
    """
    storage = build_storage(settings)
    await storage.initialize()
    try:
        report = await storage.migrate_legacy()
    finally:
        await storage.close()

    if not report.legacy_tables_found:
        print("No legacy tables found; nothing to migrate.")
        return True

    print(
        f"Migrated {report.regions} regions, {report.districts} districts, "
        f"{report.suburbs} suburbs, {report.snapshots} snapshots, {report.fact_rows} facts"
    )
    print(f"Legacy suburb total: {report.legacy_suburb_total}")
    print(f"Migrated total:      {report.migrated_total}")
    return report.totals_match


async def run_summary(settings: Settings) -> None:
    """Print national totals and top regions for each configured listing type."""
    storage = build_storage(settings)
    await storage.initialize()
    try:
        for code in settings.get_listing_types():
            summary = await storage.totals_summary(code)
            print(f"\n{code.display_name} ({code.value})")
            if summary["snapshot_date"] is None:
                print("  No data collected yet.")
                continue
            print(
                f"  Snapshot {summary['snapshot_date']}: {summary['total']:,} listings in "
                f"{summary['region_count']} regions, {summary['district_count']} districts, "
                f"{summary['suburb_count']} suburbs"
            )
            for region in await storage.region_totals(code, limit=5):
                print(f"    {region['region_name']}: {region['listing_count']:,}")

        stale = await storage.stale_snapshots()
        if stale:
            print(f"\n{len(stale)} snapshot(s) failed or incomplete:")
            for snapshot in stale:
                print(f"  {snapshot['snapshot_date']}: {snapshot['status']}")
    finally:
        await storage.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="NZ Housing Stats - listing-count collector and query API"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines instead of console output",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("collect", help="Run one collection cycle for each listing type")

    validate = subparsers.add_parser(
        "validate", help="Fetch upstream and report count agreement without saving"
    )
    validate.add_argument(
        "--listing-type",
        type=str.upper,
        choices=[t.value for t in ListingTypeCode],
        default=ListingTypeCode.HOUSES_TO_BUY.value,
        help="Listing type to validate",
    )

    subparsers.add_parser("migrate-legacy", help="Convert legacy snapshot tables")
    subparsers.add_parser("summary", help="Print totals from the latest snapshots")

    serve = subparsers.add_parser(
        "serve", help="Start the JSON API with a background collection scheduler"
    )
    serve.add_argument(
        "--no-collector",
        action="store_true",
        help="Start the web server only, without background collection",
    )
    args = parser.parse_args()

    import logging

    configure_logging(
        json_output=args.json_logs, level=logging.DEBUG if args.debug else logging.INFO
    )

    try:
        settings = Settings()
        listing_types = settings.get_listing_types()
    except Exception as e:
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from NZ_HOUSING_STATS_* environment variables or .env")
        sys.exit(1)

    logger.info(
        "starting_nz_housing_stats",
        command=args.command,
        database=settings.database_path,
        listing_types=[t.value for t in listing_types],
    )

    if args.command == "serve":
        import uvicorn

        from nz_housing_stats.web.app import create_app

        app = create_app(settings, run_collector=not args.no_collector)
        uvicorn.run(app, host=settings.web_host, port=settings.web_port, log_level="info")
    elif args.command == "collect":
        results = asyncio.run(run_collection(settings))
        if not all(r.success for r in results):
            sys.exit(1)
    elif args.command == "validate":
        if not asyncio.run(run_validate(settings, ListingTypeCode(args.listing_type))):
            sys.exit(1)
    elif args.command == "migrate-legacy":
        if not asyncio.run(run_migrate_legacy(settings)):
            sys.exit(1)
    elif args.command == "summary":
        asyncio.run(run_summary(settings))


if __name__ == "__main__":
    main()
