"""
Integration tests for the multi-provider run coordinator
"""

import asyncio
import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from ingestion.coordinator import RunCoordinator
from ingestion.decorators import SinceFilterDecorator
from ingestion.runner import SyncOrchestrator
from models import DataSource, Grant
from models.base import SyncMode
from schemas.sync import SyncResult
from core.exceptions import ConfigurationError, SyncInProgressError


WORLD_BANK_PAYLOAD = {
    "projects": {
        "P1": {"id": "P1", "project_name": "Kenya Water Security", "status": "Active", "totalamt": "1,000,000"},
        "P2": {"id": "P2", "project_name": "Nepal School Sector", "status": "Closed"},
    }
}


class ProviderHosts:
    """MockTransport handler: World Bank answers, NSF is down"""

    def __init__(self):
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "search.worldbank.org":
            return httpx.Response(200, json=WORLD_BANK_PAYLOAD)
        return httpx.Response(503, text="Service Unavailable")


@pytest_asyncio.fixture
async def provider_rows(session_factory, data_source):
    """world_bank and nsf_awards active, grants_gov inactive"""
    async with session_factory() as session:
        session.add_all([
            DataSource(name="nsf_awards", display_name="NSF Awards", is_active=True),
            DataSource(name="grants_gov", display_name="Grants.gov", is_active=False),
        ])
        await session.commit()
    return data_source


def make_coordinator(session_factory, rate_limiter, checkpoints, handler):
    options = {"transport": httpx.MockTransport(handler), "retry_delay": 0, "max_retries": 1, "page_size": 5}
    orchestrator = SyncOrchestrator(
        session_factory, rate_limiter, checkpoints, max_consecutive_failures=1
    )
    return RunCoordinator(
        session_factory,
        rate_limiter=rate_limiter,
        checkpoints=checkpoints,
        orchestrator=orchestrator,
        client_options={"world_bank": options, "nsf_awards": options}
    )


class TestRunCoordinator:

    @pytest.mark.asyncio
    async def test_failing_provider_does_not_stop_siblings(self, session_factory, rate_limiter, checkpoints, provider_rows):
        handler = ProviderHosts()
        coordinator = make_coordinator(session_factory, rate_limiter, checkpoints, handler)

        results = await coordinator.run(SyncMode.FULL)

        # Registry order, inactive grants_gov skipped
        assert [r.source for r in results] == ["nsf_awards", "world_bank"]
        nsf, world_bank = results
        assert nsf.status == "failed"
        assert nsf.errors >= 1
        assert world_bank.status == "success"
        assert world_bank.loaded == 2

        async with session_factory() as session:
            grants = (await session.execute(select(func.count()).select_from(Grant))).scalar()
        assert grants == 2

    @pytest.mark.asyncio
    async def test_incremental_applies_since_filter(self, session_factory, rate_limiter, checkpoints, provider_rows):
        handler = ProviderHosts()
        coordinator = make_coordinator(session_factory, rate_limiter, checkpoints, handler)

        await coordinator.run(SyncMode.INCREMENTAL, only=["world_bank"])

        assert len(handler.requests) == 1
        assert "strdate" in handler.requests[0].url.params

    @pytest.mark.asyncio
    async def test_build_wraps_only_incremental(self, session_factory, checkpoints, data_source):
        coordinator = RunCoordinator(session_factory, checkpoints=checkpoints, lookback_days=3)

        incremental = coordinator.build(data_source, SyncMode.INCREMENTAL)
        full = coordinator.build(data_source, SyncMode.FULL)

        assert isinstance(incremental, SinceFilterDecorator)
        assert incremental.lookback_days == 3
        assert incremental.name == "world_bank"
        assert not isinstance(full, SinceFilterDecorator)

    @pytest.mark.asyncio
    async def test_unexpected_orchestrator_error_becomes_failed_result(self, session_factory, provider_rows):
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(side_effect=[
            RuntimeError("boom"),
            SyncResult(source="world_bank", total=2, loaded=2),
        ])
        coordinator = RunCoordinator(session_factory, orchestrator=orchestrator)

        results = await coordinator.run(SyncMode.FULL)

        assert results[0].source == "nsf_awards"
        assert results[0].status == "failed"
        assert results[0].errors == 1
        assert results[0].error_message == "boom"
        assert results[1].status == "success"

    @pytest.mark.asyncio
    async def test_unreadable_sources_raise_configuration_error(self):
        session_factory = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("no such table")))
        coordinator = RunCoordinator(session_factory, orchestrator=MagicMock())

        with pytest.raises(ConfigurationError):
            await coordinator.run()


class TestRunOne:

    @pytest.mark.asyncio
    async def test_unknown_provider(self, session_factory, provider_rows):
        coordinator = RunCoordinator(session_factory, orchestrator=MagicMock())

        with pytest.raises(ConfigurationError) as exc_info:
            await coordinator.run_one("made_up_provider")
        assert "Unknown provider" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_inactive_provider(self, session_factory, provider_rows):
        coordinator = RunCoordinator(session_factory, orchestrator=MagicMock())

        with pytest.raises(ConfigurationError) as exc_info:
            await coordinator.run_one("grants_gov")
        assert "not active" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_active_provider(self, session_factory, provider_rows):
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(return_value=SyncResult(source="world_bank", total=2, loaded=2))
        coordinator = RunCoordinator(session_factory, orchestrator=orchestrator)

        result = await coordinator.run_one("world_bank", SyncMode.FULL)

        assert result.loaded == 2
        client, mode = orchestrator.run.await_args.args
        assert client.name == "world_bank"
        assert mode == SyncMode.FULL


def blocking_orchestrator(release: asyncio.Event, blocked=("world_bank",)):
    """Orchestrator stand-in whose runs for blocked providers wait until release is set"""
    async def run(client, mode):
        if client.name in blocked:
            await release.wait()
        return SyncResult(source=client.name, total=1, loaded=1)

    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(side_effect=run)
    return orchestrator


class TestConcurrentRuns:

    @pytest.mark.asyncio
    async def test_second_trigger_for_running_provider_rejected(self, session_factory, provider_rows):
        release = asyncio.Event()
        coordinator = RunCoordinator(session_factory, orchestrator=blocking_orchestrator(release))

        first = asyncio.create_task(coordinator.run_one("world_bank"))
        while coordinator.orchestrator.run.await_count == 0:
            await asyncio.sleep(0)

        with pytest.raises(SyncInProgressError):
            await coordinator.run_one("world_bank")

        release.set()
        result = await first
        assert result.loaded == 1
        assert coordinator.orchestrator.run.await_count == 1

        # Lock released once the run finished
        assert (await coordinator.run_one("world_bank")).loaded == 1

    @pytest.mark.asyncio
    async def test_scheduled_run_skips_provider_already_running(self, session_factory, provider_rows):
        release = asyncio.Event()
        coordinator = RunCoordinator(session_factory, orchestrator=blocking_orchestrator(release))

        manual = asyncio.create_task(coordinator.run_one("world_bank"))
        while coordinator.orchestrator.run.await_count == 0:
            await asyncio.sleep(0)

        results = await coordinator.run(SyncMode.INCREMENTAL)
        release.set()
        await manual

        assert [r.source for r in results] == ["nsf_awards"]
        assert coordinator.orchestrator.run.await_count == 2
