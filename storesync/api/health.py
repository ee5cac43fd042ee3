"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from storesync.config import get_settings
from storesync.connectors.woocommerce import RESOURCES
from storesync.scheduler import get_scheduler_status
from storesync import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "entity_types": list(RESOURCES.keys()),
        "queue": {
            "batch_size": settings.queue_batch_size,
            "max_retries": settings.queue_max_retries,
        },
        "scheduler": get_scheduler_status(),
        "timestamp": datetime.utcnow().isoformat()
    }
