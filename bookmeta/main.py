"""
Main application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from bookmeta import __version__
from bookmeta.api.v1.admin_endpoints import router as admin_router
from bookmeta.api.v1.dependencies import get_backfill_coordinator, get_settings, reset_dependencies
from bookmeta.api.v1.search_endpoints import router as search_router
from bookmeta.config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    if settings.backfill_enabled:
        get_backfill_coordinator().start()
    else:
        logger.info("Backfill worker disabled (BOOKMETA_BACKFILL_ENABLED=false)")

    yield

    reset_dependencies()


app = FastAPI(
    title="Book Metadata Consolidation API",
    description="Canonical book records aggregated from external catalogs.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Include API routers
app.include_router(search_router, prefix="/api/v1", tags=["search"])
app.include_router(admin_router, prefix="/api/v1", tags=["admin"])


@app.get("/")
def read_root():
    """Root endpoint."""
    return {
        "message": "Book Metadata Consolidation API",
        "docs": "/docs",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("bookmeta.main:app", host="0.0.0.0", port=8000, reload=True)
