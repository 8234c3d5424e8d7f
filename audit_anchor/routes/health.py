"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from audit_anchor.core.config import get_settings

router = APIRouter(prefix="/health", tags=["health"])
settings = get_settings()


@router.get("/")
async def health_check():
    """Root health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version
    }


@router.get("/live")
async def liveness():
    """Liveness probe endpoint."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request):
    """Readiness probe endpoint; ready once the batch scheduler is running."""
    service = getattr(request.app.state, "audit_service", None)
    if service is None or not service.scheduler.running:
        return {"status": "starting"}
    return {"status": "ready"}
