"""Main entry point - async orchestration of reconciliation and the health server."""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Optional

import uvicorn

from .aggregator import SearchAggregator, TrendReader
from .backoff import BackoffExecutor
from .catalog import TMDBCatalog
from .config import Settings, settings
from .database import DocumentStore
from .deduplicator import DuplicateReconciler
from .errors import MovieTrendsError, ReconciliationPartialFailure
from .health import create_app
from .saved import SavedMovies

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


@dataclass
class Services:
    """Explicitly constructed collaborators and components."""

    settings: Settings
    store: DocumentStore
    catalog: TMDBCatalog
    executor: BackoffExecutor
    aggregator: SearchAggregator
    reader: TrendReader
    reconciler: DuplicateReconciler
    saved: SavedMovies


def build_services(config: Settings, catalog: Optional[TMDBCatalog] = None) -> Services:
    """Wire every component from one Settings object."""
    store = DocumentStore(config.database_path)
    catalog = catalog or TMDBCatalog(
        config.tmdb_api_key, base_url=config.tmdb_base_url, timeout=config.request_timeout
    )
    executor = BackoffExecutor(base_delay=config.retry_base_delay)

    return Services(
        settings=config,
        store=store,
        catalog=catalog,
        executor=executor,
        aggregator=SearchAggregator(
            store,
            executor,
            collection=config.trending_collection,
            max_retries=config.max_retries,
            image_base=config.tmdb_image_base_url,
            placeholder=config.poster_placeholder_url,
        ),
        reader=TrendReader(
            store,
            executor,
            collection=config.trending_collection,
            overfetch_factor=config.trending_overfetch_factor,
            max_retries=config.max_retries,
        ),
        reconciler=DuplicateReconciler(
            store,
            executor,
            collection=config.trending_collection,
            scan_limit=config.reconcile_scan_limit,
            max_retries=config.max_retries,
        ),
        saved=SavedMovies(
            store,
            collection=config.saved_collection,
            image_base=config.tmdb_image_base_url,
            placeholder=config.poster_placeholder_url,
        ),
    )


async def check_connectivity(services: Services) -> dict:
    """Check both collaborators concurrently."""

    async def store_ok() -> bool:
        try:
            return await services.store.ping()
        except (MovieTrendsError, RuntimeError) as e:
            logger.error(f"Document store connectivity check failed: {e}")
            return False

    catalog_result, store_result = await asyncio.gather(
        services.catalog.check_connection(), store_ok()
    )
    logger.info(
        f"Connectivity: catalog={'ok' if catalog_result else 'failed'}, "
        f"store={'ok' if store_result else 'failed'}"
    )
    return {"catalog": catalog_result, "store": store_result}


async def run_reconcile_once(reconciler: DuplicateReconciler) -> None:
    try:
        await reconciler.reconcile()
    except ReconciliationPartialFailure as e:
        logger.error(
            f"Reconciliation incomplete ({e.duplicate_groups_found} groups, "
            f"{e.records_removed} removed): {e.cause}"
        )


async def startup(services: Services) -> dict:
    """Connectivity check, then an initial reconciliation when both collaborators answer."""
    results = await check_connectivity(services)

    if not results["catalog"] and not results["store"]:
        logger.error("Both TMDB and the document store are unreachable")
    elif not results["catalog"]:
        logger.warning("Cannot connect to the movie catalog; some features may not work")
    elif not results["store"]:
        logger.warning("Trending data unavailable: cannot connect to the document store")
    else:
        logger.info("All services connected, running reconciliation...")
        await run_reconcile_once(services.reconciler)

    return results


async def reconcile_task(reconciler: DuplicateReconciler, interval: float, shutdown: asyncio.Event) -> None:
    """Periodic reconciliation of duplicate aggregates."""
    while not shutdown.is_set():
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
        else:
            break

        await run_reconcile_once(reconciler)


async def run_health_server(services: Services) -> None:
    """Run the FastAPI health server."""
    app = create_app(
        services.store,
        services.catalog,
        services.reader,
        services.reconciler,
        trending_limit=services.settings.trending_limit,
    )
    config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=services.settings.health_port,
        log_level="warning",
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    except asyncio.CancelledError:
        pass


async def main(config: Settings = settings) -> None:
    """Main entry point."""
    configure_logging(config.log_level)
    shutdown = asyncio.Event()

    logger.info("=" * 60)
    logger.info("Movie Trends service starting...")
    logger.info(f"Database: {config.database_path}")
    logger.info(f"Reconcile interval: {config.reconcile_interval}s")
    logger.info("=" * 60)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda s, f: shutdown.set())

    services = build_services(config)
    await services.store.connect()

    try:
        await startup(services)

        tasks = [
            asyncio.create_task(run_health_server(services)),
            asyncio.create_task(reconcile_task(services.reconciler, config.reconcile_interval, shutdown)),
        ]
        logger.info(f"Started {len(tasks)} tasks (health + reconciliation)")

        await shutdown.wait()
        logger.info("Shutting down...")

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await services.aggregator.drain()

    finally:
        await services.catalog.close()
        await services.store.close()

    logger.info("Shutdown complete")


def run():
    """Entry point for running the application."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
