"""
Provider configuration, sync history and manual sync trigger
"""

from collections import defaultdict
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from api.dependencies import get_db, get_coordinator
from schemas.api import DataSourceResponse, SyncLogResponse, SyncRunsResponse
from schemas.sync import SyncResult
from models.base import SyncMode
from models.data_source import DataSource
from models.sync_log import SyncLog
from models.sync_state import SyncState
from ingestion.coordinator import RunCoordinator
from core.exceptions import ConfigurationError, SyncInProgressError
from typing import List
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


@router.get("/sources", response_model=List[DataSourceResponse])
async def list_sources(db: AsyncSession = Depends(get_db)):
    """Configured providers with cumulative counters and current checkpoint"""
    result = await db.execute(select(DataSource).order_by(DataSource.id))
    data_sources = result.scalars().all()

    state_result = await db.execute(select(SyncState))
    checkpoints = defaultdict(dict)
    for state in state_result.scalars().all():
        checkpoints[state.data_source_id][state.state_key] = state.state_value

    return [
        DataSourceResponse(
            id=source.id,
            name=source.name,
            display_name=source.display_name,
            is_active=source.is_active,
            last_successful_sync=source.last_successful_sync,
            total_grants_fetched=source.total_grants_fetched or 0,
            total_grants_loaded=source.total_grants_loaded or 0,
            checkpoint=checkpoints.get(source.id, {})
        )
        for source in data_sources
    ]


@router.get("/runs", response_model=SyncRunsResponse)
async def list_runs(
    limit: int = Query(20, ge=1, le=200, description="Number of recent runs to return"),
    db: AsyncSession = Depends(get_db)
):
    """Most recent sync runs, newest first"""
    total = (await db.execute(select(func.count()).select_from(SyncLog))).scalar() or 0

    result = await db.execute(
        select(SyncLog, DataSource.name)
        .join(DataSource, SyncLog.data_source_id == DataSource.id)
        .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
        .limit(limit)
    )

    runs = [
        SyncLogResponse(
            run_id=log.run_id,
            source_name=source_name,
            sync_type=log.sync_type.value,
            status=log.status.value,
            started_at=log.started_at,
            completed_at=log.completed_at,
            duration_seconds=log.duration_seconds,
            records_fetched=log.records_fetched or 0,
            records_created=log.records_created or 0,
            records_updated=log.records_updated or 0,
            records_failed=log.records_failed or 0,
            checkpoint_before=log.checkpoint_before,
            checkpoint_after=log.checkpoint_after,
            error_message=log.error_message
        )
        for log, source_name in result.all()
    ]
    return SyncRunsResponse(runs=runs, total=total)


@router.post("/{source}", response_model=SyncResult)
async def trigger_sync(
    source: str,
    request: Request,
    mode: SyncMode = Query(SyncMode.INCREMENTAL, description="full, resume or incremental"),
    coordinator: RunCoordinator = Depends(get_coordinator)
):
    """Run one provider sync now and return its result"""
    request_id = getattr(request.state, "request_id", None)
    logger.info(f"[{request_id}] Manual {mode.value} sync requested for {source}")

    try:
        return await coordinator.run_one(source, mode)
    except ConfigurationError as e:
        logger.warning(f"[{request_id}] {e.message}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=404, detail=e.message)
    except SyncInProgressError as e:
        logger.warning(f"[{request_id}] {e.message}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=409, detail=e.message)
