"""
StoreSync Catalog Sync Engine
FastAPI application: the dashboard's entry point into the sync engine
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from storesync.config import get_settings
from storesync.exceptions import SyncError
from storesync.utils.logger import log
from storesync import __version__

from storesync.api import health, sync
from storesync.models.base import init_db
from storesync.scheduler import start_scheduler, stop_scheduler

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, then start the queue replay scheduler when enabled"""
    log.info(f"Starting {settings.app_name} v{__version__} ({settings.environment})")

    try:
        init_db()
        log.info("Sync tables ready")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    try:
        start_scheduler()
    except Exception as e:
        log.error(f"Scheduler startup error: {str(e)}")

    yield

    stop_scheduler()
    log.info("StoreSync stopped")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Catalog synchronization engine

    Keeps a local copy of a WooCommerce store's catalog consistent with the store:
    - Discovers records missing or changed locally, and queued local edits
    - Pulls full remote records into local snapshots in paced batches
    - Replays queued local creates, updates and deletes with capped retries
    - Tracks per-tenant sync status for dashboard polling
    """,
    lifespan=lifespan
)

# The dashboard is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(sync.router)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    """Engine errors that escaped a route's own mapping"""
    log.error(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": exc.to_dict()})


@app.get("/")
async def root():
    """Endpoint index"""
    return {
        "app": settings.app_name,
        "version": __version__,
        "endpoints": {
            "discover": "POST /sync/{tenant_id}/discover",
            "pull": "POST /sync/{tenant_id}/pull",
            "resync": "POST /sync/{tenant_id}/resync",
            "enqueue": "POST /sync/{tenant_id}/queue",
            "process_queue": "POST /sync/{tenant_id}/queue/process",
            "queue_summary": "GET /sync/{tenant_id}/queue/summary",
            "status": "GET /sync/{tenant_id}/status",
            "health": "GET /health",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "storesync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
