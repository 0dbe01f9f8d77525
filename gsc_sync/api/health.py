"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from gsc_sync.config import get_settings
from gsc_sync import __version__

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
        "reporting_lag_days": settings.gsc_reporting_lag_days,
        "export_enabled": settings.export_enabled,
        "timestamp": datetime.utcnow().isoformat()
    }
