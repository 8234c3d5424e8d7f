"""
FastAPI application entry point with async lifespan.
"""
import logging

import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI

from audit_anchor.core.config import get_settings
from audit_anchor.core.database import AsyncSessionLocal, init_db, close_db
from audit_anchor.handlers.service import AuditService
from audit_anchor.routes import audit, health

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan manager for startup and shutdown."""
    # Startup
    await init_db()
    service = AuditService.from_settings(settings, AsyncSessionLocal)
    if settings.recovery_on_startup:
        await service.recover_unlinked(min_age=settings.recovery_min_age)
    service.start()
    app.state.audit_service = service
    yield
    # Shutdown
    try:
        await service.stop(flush=settings.flush_on_shutdown)
    except Exception:
        logger.exception("Final audit batch failed during shutdown")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Audit trail batching and ledger anchoring service",
    lifespan=lifespan
)

# Register routes
app.include_router(health.router)
app.include_router(audit.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    uvicorn.run(
        app,
        host='0.0.0.0',
        port=settings.port,
        log_level=settings.log_level.lower()
    )
