"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Response
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync import __version__
from catalog_sync.api.deps import get_database
from catalog_sync.api.routes import products, sync
from catalog_sync.config import settings
from catalog_sync.db.models import Base
from catalog_sync.db.session import engine
from catalog_sync.logging_config import setup_logging
from catalog_sync.worker.scheduler import setup_scheduler
from catalog_sync.worker.service import SyncService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting catalog sync...")

    # Initialize database
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    service = SyncService()
    app.state.sync_service = service

    scheduler = None
    if settings.auto_sync_enabled:
        scheduler = setup_scheduler(service)
        scheduler.start()
        logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")

    if scheduler:
        scheduler.shutdown()

    await service.close()
    await engine.dispose()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Catalog Sync",
    description="Import and refresh supplier products for a reseller catalog",
    version=__version__,
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(sync.router)
app.include_router(products.router)


@app.get("/health")
async def health(db: AsyncSession = Depends(get_database)):
    """Health check endpoint (includes a database round trip)."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "healthy"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    # Run with uvicorn
    uvicorn.run(
        "catalog_sync.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
