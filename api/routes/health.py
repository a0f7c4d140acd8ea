"""
Health check endpoint with database and provider sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from api.dependencies import get_db
from schemas.api import HealthCheckResponse, SourceSyncInfo
from models.base import SyncStatus
from models.data_source import DataSource
from models.sync_log import SyncLog
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Latest sync status for every active provider
    """

    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    sources = []
    successful_sources = 0
    failed_sources = 0

    if db_connected:
        try:
            result = await db.execute(
                select(DataSource).where(DataSource.is_active.is_(True)).order_by(DataSource.name)
            )
            for data_source in result.scalars().all():
                log_result = await db.execute(
                    select(SyncLog)
                    .where(SyncLog.data_source_id == data_source.id)
                    .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
                    .limit(1)
                )
                last_run = log_result.scalars().first()

                if last_run is not None and last_run.status == SyncStatus.FAILED:
                    failed_sources += 1
                elif last_run is not None and last_run.status in (SyncStatus.SUCCESS, SyncStatus.PARTIAL):
                    successful_sources += 1

                sources.append(SourceSyncInfo(
                    source_name=data_source.name,
                    is_active=data_source.is_active,
                    last_successful_sync=data_source.last_successful_sync,
                    last_run_status=last_run.status.value if last_run else None,
                    last_run_started_at=last_run.started_at if last_run else None,
                    last_run_errors=(last_run.records_failed or 0) if last_run else 0
                ))
        except Exception as e:
            logger.error(f"Failed to fetch provider sync status: {str(e)}")

    # Status is derived by the HealthCheckResponse validator
    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        sources=sources,
        total_sources=len(sources),
        successful_sources=successful_sources,
        failed_sources=failed_sources
    )
