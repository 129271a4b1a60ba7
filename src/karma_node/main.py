# src/karma_node/main.py
"""Main entry point for the Karma node."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from karma_node import __version__
from karma_node.api.v1 import (
    replication_router,
    reputation_router,
    sessions_router,
    system_router,
    votes_router,
)
from karma_node.core.errors import KarmaError
from karma_node.core.settings import settings
from karma_node.db.session import SessionLocal, create_tables
from karma_node.services.ingest import LogIngestService
from karma_node.services.log_watcher import LogWatcher
from karma_node.services.replication import seed_trusted_nodes
from karma_node.services.replication_sync import ReplicationSyncWorker
from karma_node.services.session_manager import SessionManager
from karma_node.services.ttl_store import TTLStore

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Karma Node API",
    description="Proof-of-presence player reputation node",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(votes_router, prefix="/api/v1")
app.include_router(reputation_router, prefix="/api/v1")
app.include_router(sessions_router, prefix="/api/v1")
app.include_router(replication_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.exception_handler(KarmaError)
async def karma_error_handler(request: Request, exc: KarmaError) -> JSONResponse:
    """Render domain failures as ``{"error", "message", "details"}``."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def on_startup() -> None:
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    create_tables()
    with SessionLocal() as db:
        seed_trusted_nodes(db, settings.trusted_nodes)

    app.state.ttl_store = TTLStore(settings.redis_url)

    app.state.ingest = None
    if settings.log_watcher_enabled:
        watcher = LogWatcher(
            settings.log_file_path,
            settings.log_poll_interval_ms,
            future_tolerance=timedelta(minutes=settings.future_timestamp_tolerance_minutes),
        )
        ingest = LogIngestService(watcher, SessionManager(settings.node_id))
        await ingest.start()
        app.state.ingest = ingest

    worker = ReplicationSyncWorker()
    await worker.start()
    app.state.sync_worker = worker
    logger.info("Karma node %s (%s) started", settings.node_id, settings.node_name)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: ReplicationSyncWorker | None = getattr(app.state, "sync_worker", None)
    if worker:
        await worker.stop()
    ingest: LogIngestService | None = getattr(app.state, "ingest", None)
    if ingest:
        closed = await ingest.stop()
        logger.info("Shutdown closed %d open sessions", closed)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok", "nodeId": settings.node_id}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Karma Node API",
        "version": __version__,
        "nodeId": settings.node_id,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("karma_node.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
