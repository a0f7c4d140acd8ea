import pytest
from unittest.mock import AsyncMock, MagicMock
from apscheduler.triggers.cron import CronTrigger
from ingestion.scheduler import SyncScheduler
from models.base import SyncMode
from schemas.sync import SyncResult
from core.exceptions import ConfigurationError


@pytest.mark.asyncio
async def test_scheduler_initialization():
    scheduler = SyncScheduler(coordinator=MagicMock(), cron="30 3 * * *")
    assert scheduler.scheduler is not None
    assert scheduler.cron == "30 3 * * *"


@pytest.mark.asyncio
async def test_scheduler_job_runs_incremental_sync():
    coordinator = MagicMock()
    coordinator.run = AsyncMock(return_value=[
        SyncResult(source="world_bank", total=3, loaded=3),
        SyncResult(source="nsf_awards", errors=1, status="failed"),
    ])

    scheduler = SyncScheduler(coordinator=coordinator)
    await scheduler.run_sync_job()

    coordinator.run.assert_awaited_once_with(SyncMode.INCREMENTAL)


@pytest.mark.asyncio
async def test_scheduler_job_survives_configuration_error():
    coordinator = MagicMock()
    coordinator.run = AsyncMock(side_effect=ConfigurationError("Failed to load provider configuration"))

    scheduler = SyncScheduler(coordinator=coordinator)

    # Logged, not raised
    await scheduler.run_sync_job()


@pytest.mark.asyncio
async def test_scheduler_registers_single_instance_cron_job():
    scheduler = SyncScheduler(coordinator=MagicMock(), cron="0 2 * * *")

    scheduler.start()
    try:
        job = scheduler.scheduler.get_job("grant_sync_job")
        assert job is not None
        assert job.max_instances == 1
        assert isinstance(job.trigger, CronTrigger)
    finally:
        scheduler.stop()
