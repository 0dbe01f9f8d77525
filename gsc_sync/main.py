"""
GSC Keyword Sync
Main FastAPI application
"""
from fastapi import FastAPI
from contextlib import asynccontextmanager

from gsc_sync.config import get_settings
from gsc_sync.utils.logger import log
from gsc_sync import __version__
from gsc_sync.api import health, sync

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    try:
        from gsc_sync.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler for automated campaign syncs
    if settings.enable_scheduler:
        try:
            from gsc_sync.scheduler import start_scheduler
            start_scheduler()
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    if settings.enable_scheduler:
        from gsc_sync.scheduler import stop_scheduler
        stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Search Console keyword and traffic sync engine

    - Daily incremental keyword and site traffic sync
    - Month-by-month historical backfill, resumable
    - Pre-campaign initial position baseline
    - Rolling 12-month site traffic
    """,
    lifespan=lifespan
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(sync.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gsc_sync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
