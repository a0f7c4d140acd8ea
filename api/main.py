"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from api.routes import health, sync
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.logging import setup_logging
from ingestion.scheduler import SyncScheduler
from api.dependencies import get_coordinator
import logging

setup_logging()

logger = logging.getLogger(__name__)

scheduler = SyncScheduler(coordinator=get_coordinator())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown"""
    logger.info("Starting Grant Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.SCHEDULER_ENABLED:
        scheduler.start()

    yield

    logger.info("Shutting down Grant Sync API")
    if settings.SCHEDULER_ENABLED:
        scheduler.stop()


app = FastAPI(
    title="Grant Sync API",
    description="Operations API for the funding-opportunity sync pipeline",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(RequestContextMiddleware)

app.include_router(health.router)
app.include_router(sync.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Grant Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "sources": "/sync/sources",
            "runs": "/sync/runs",
            "trigger": "/sync/{source}"
        }
    }
