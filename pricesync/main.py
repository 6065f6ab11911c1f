"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from pricesync.api.routes import diagnostics, sync
from pricesync.config import settings
from pricesync.logging_config import setup_logging
from pricesync.remote.client import RemoteStoreClient
from pricesync.worker.tasks import SyncTaskRunner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting price-list sync service...")

    remote_client = RemoteStoreClient()
    app.state.remote_client = remote_client
    app.state.task_runner = SyncTaskRunner(remote_client)
    logger.info(f"Remote store: {remote_client.base_url}")

    yield

    logger.info("Shutting down...")
    await remote_client.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Price-List Sync",
    description="Reconcile supplier price-list extracts with the product store",
    version="0.1.0",
    lifespan=lifespan,
)

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(sync.router)
app.include_router(diagnostics.router)


@app.get("/")
async def root():
    """Describe the available endpoints."""
    return {
        "message": "Price-list sync API",
        "version": "0.1.0",
        "endpoints": {
            "POST /api/sync": "Upload a CSV extract (field 'file', optional 'markup') and sync it",
            "POST /api/sync/aggregate": "Recompute product aggregates from current quotes",
            "GET /api/diagnostics/counts": "Collection totals",
            "GET /api/diagnostics/products/{kind}/{value}": "Product lookup by code or name",
            "GET /api/diagnostics/products-without-code": "Products identified by name only",
            "GET /health": "Health check",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    uvicorn.run(
        "pricesync.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
