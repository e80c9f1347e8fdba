"""FastAPI health check and operations server."""

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Optional
import logging

from .aggregator import TrendReader
from .catalog import TMDBCatalog
from .database import DocumentStore
from .deduplicator import DuplicateReconciler
from .errors import MovieTrendsError, ReconciliationPartialFailure

logger = logging.getLogger(__name__)

APP_NAME = "Movie Trends"
APP_VERSION = "1.0.0"


def create_app(
    store: DocumentStore,
    catalog: Optional[TMDBCatalog],
    reader: TrendReader,
    reconciler: DuplicateReconciler,
    trending_limit: int = 5,
) -> FastAPI:
    """Build the ops app around explicitly constructed services."""
    app = FastAPI(title=APP_NAME, version=APP_VERSION)
    app.state.store = store
    app.state.catalog = catalog
    app.state.reader = reader
    app.state.reconciler = reconciler
    app.state.trending_limit = trending_limit
    app.state.start_time = datetime.now()

    app.get("/")(root)
    app.get("/healthz")(healthcheck)
    app.get("/ready")(readiness)
    app.get("/stats")(stats)
    app.get("/trending")(trending)
    app.post("/reconcile")(run_reconcile)
    return app


def _last_reconcile(reconciler: DuplicateReconciler) -> Optional[dict]:
    if reconciler.last_result is None:
        return None
    return {
        **reconciler.last_result.model_dump(),
        "ran_at": reconciler.last_run_at.isoformat() if reconciler.last_run_at else None,
    }


async def root():
    """Root endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "status": "running",
    }


async def healthcheck(request: Request):
    """Connectivity of both collaborators."""
    state = request.app.state
    uptime_seconds = (datetime.now() - state.start_time).total_seconds()

    db_healthy = True
    try:
        await state.store.ping()
    except (MovieTrendsError, RuntimeError) as e:
        db_healthy = False
        logger.error(f"Document store health check failed: {e}")

    catalog_healthy = state.catalog is not None and await state.catalog.check_connection()

    return {
        "status": "healthy" if db_healthy and catalog_healthy else "unhealthy",
        "uptime_seconds": int(uptime_seconds),
        "database": "connected" if db_healthy else "disconnected",
        "catalog": "connected" if catalog_healthy else "disconnected",
        "last_reconcile": _last_reconcile(state.reconciler),
    }


async def readiness(request: Request):
    """Readiness probe for Kubernetes."""
    try:
        await request.app.state.store.ping()
        return {"ready": True}
    except (MovieTrendsError, RuntimeError):
        return {"ready": False}


async def stats(request: Request):
    """Get system statistics."""
    state = request.app.state
    try:
        db_stats = await state.store.get_stats()
    except (MovieTrendsError, RuntimeError) as e:
        db_stats = {"error": str(e)}

    return {
        "uptime_seconds": int((datetime.now() - state.start_time).total_seconds()),
        "database": db_stats,
        "last_reconcile": _last_reconcile(state.reconciler),
    }


async def trending(request: Request, limit: Optional[int] = Query(default=None, ge=1, le=50)):
    """Top trending movies."""
    state = request.app.state
    try:
        movies = await state.reader.top_trending(limit or state.trending_limit)
    except MovieTrendsError as e:
        logger.error(f"Trending read failed: {e}")
        return JSONResponse(status_code=502, content={"error": str(e)})
    return [m.model_dump(mode="json") for m in movies]


async def run_reconcile(request: Request):
    """Run one reconciliation pass now."""
    try:
        result = await request.app.state.reconciler.reconcile()
    except ReconciliationPartialFailure as e:
        return JSONResponse(
            status_code=502,
            content={
                "error": str(e.cause),
                "duplicate_groups_found": e.duplicate_groups_found,
                "records_removed": e.records_removed,
            },
        )
    return result.model_dump()
