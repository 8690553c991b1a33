"""FastAPI application factory with background collection scheduler."""

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from nz_housing_stats.collection import collect_all
from nz_housing_stats.config import Settings
from nz_housing_stats.db import HousingStorage, QueryCache
from nz_housing_stats.logging import get_logger
from nz_housing_stats.sources import LocalitySource, TradeMeLocalitiesSource

logger = get_logger(__name__)

COLLECTOR_INITIAL_DELAY_SECONDS = 30


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def run_collection_cycle(
    settings: Settings,
    storage: HousingStorage,
    source: LocalitySource,
) -> list[str]:
    """Run one scheduled cycle and return the listing type codes that failed.

    Failed listing types do not raise; they are logged so the next cycle
    retries them.
    """
    results = await collect_all(settings, storage, source)
    failed = [r.listing_type for r in results if not r.success]
    if failed:
        logger.warning(
            "collector_cycle_incomplete",
            failed=failed,
            errors={r.listing_type: r.error for r in results if not r.success},
        )
    return failed


async def _collection_loop(
    settings: Settings,
    storage: HousingStorage,
    source: LocalitySource,
    interval_minutes: int,
) -> None:
    """Run collection cycles on a recurring schedule.

    Cycles never overlap: the next one is scheduled only after the previous
    one has returned.
    """
    # Initial delay so the web server can become responsive first
    logger.info("collector_initial_delay", seconds=COLLECTOR_INITIAL_DELAY_SECONDS)
    await asyncio.sleep(COLLECTOR_INITIAL_DELAY_SECONDS)

    while True:
        logger.info("collector_running")
        try:
            await run_collection_cycle(settings, storage, source)
        except Exception:
            logger.error("collector_error", exc_info=True)
        logger.info("collector_sleeping", minutes=interval_minutes)
        await asyncio.sleep(interval_minutes * 60)


def create_app(
    settings: Settings | None = None,
    *,
    run_collector: bool = True,
    source: LocalitySource | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings. Loaded from env if not provided.
        run_collector: Whether to start the background collection scheduler.
        source: Upstream source for the scheduler. Built from settings if
            not provided.
    """
    if settings is None:
        settings = Settings()

    storage = HousingStorage(
        settings.database_path,
        cache=QueryCache(
            ttl_seconds=settings.query_cache_ttl_seconds,
            max_entries=settings.query_cache_max_entries,
        ),
    )
    collector_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        nonlocal collector_task, source
        await storage.initialize()
        app.state.storage = storage
        app.state.settings = settings

        if run_collector:
            if source is None:
                source = TradeMeLocalitiesSource(
                    url=settings.localities_url,
                    user_agent=settings.user_agent,
                    timeout=settings.request_timeout_seconds,
                )
            collector_task = asyncio.create_task(
                _collection_loop(settings, storage, source, settings.collection_interval_minutes)
            )
            logger.info(
                "web_server_started",
                collection_interval=settings.collection_interval_minutes,
            )
        else:
            logger.info("web_server_started", collector="disabled")

        yield

        # Shutdown
        if collector_task:
            collector_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await collector_task
        if source is not None:
            await source.close()
        await storage.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="NZ Housing Stats", lifespan=lifespan)

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware)

    # Register routes
    from nz_housing_stats.web.routes import router

    app.include_router(router)

    return app
