"""FastAPI application for the ticket sync engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ticketsync.config import get_settings
from ticketsync.database import check_db_ready
from ticketsync.limiter import limiter
from ticketsync.routers import health_router, sync_router
from ticketsync.services.cache import build_cache_invalidator
from ticketsync.tasks.scheduler import SyncScheduler

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting ticketsync backend...")

    # Verify database is ready
    try:
        await check_db_ready()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Database not ready: {e}")
        raise

    app.state.cache = build_cache_invalidator(settings.redis_url)

    # Start scheduler (ingestion + aggregation) once DB is ready.
    app.state.scheduler = None
    if settings.scheduler_enabled:
        app.state.scheduler = SyncScheduler(settings=settings, cache=app.state.cache)
        app.state.scheduler.start()
    else:
        logger.info("Scheduler disabled by configuration")

    yield

    # Shutdown
    if app.state.scheduler:
        app.state.scheduler.shutdown()
    close = getattr(app.state.cache, "close", None)
    if close:
        await close()
    logger.info("ticketsync backend shut down")


# Create FastAPI app
app = FastAPI(
    title="Ticketsync API",
    description="Zendesk ticket sync and analytics aggregation engine",
    version="0.1.0",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(health_router)
app.include_router(sync_router, prefix=settings.api_v1_prefix)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Ticketsync API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ticketsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
