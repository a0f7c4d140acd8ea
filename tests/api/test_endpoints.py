"""
API endpoint tests
"""

import httpx
import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from api.main import app, scheduler
from api.dependencies import get_db, get_coordinator
from models import DataSource, SyncLog
from models.base import SyncMode, SyncStatus
from schemas.sync import SyncResult
from core.exceptions import ConfigurationError, SyncInProgressError


@pytest.fixture
def coordinator():
    coordinator = MagicMock()
    coordinator.run_one = AsyncMock(
        return_value=SyncResult(source="world_bank", total=5, loaded=4, updated=1, duration=0.42)
    )
    return coordinator


@pytest_asyncio.fixture
async def client(session_factory, coordinator):
    """Async test client with database and coordinator overrides"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


async def add_run(session_factory, data_source_id, status, started_at, **fields):
    async with session_factory() as session:
        session.add(SyncLog(
            data_source_id=data_source_id,
            sync_type=SyncMode.INCREMENTAL,
            status=status,
            started_at=started_at,
            **fields
        ))
        await session.commit()


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


@pytest.mark.asyncio
async def test_request_id_echoed(client):
    response = await client.get("/", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-API-Latency-ms" in response.headers


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy_with_no_runs(self, client, data_source):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database_connected"] is True
        assert data["total_sources"] == 1
        assert data["sources"][0]["source_name"] == "world_bank"
        assert data["sources"][0]["last_run_status"] is None

    @pytest.mark.asyncio
    async def test_degraded_when_one_provider_failed(self, client, session_factory, data_source):
        async with session_factory() as session:
            nsf = DataSource(name="nsf_awards", display_name="NSF Awards", is_active=True)
            session.add(nsf)
            await session.commit()

        now = datetime.utcnow()
        await add_run(session_factory, data_source.id, SyncStatus.FAILED, now - timedelta(hours=2))
        # Latest run wins
        await add_run(session_factory, data_source.id, SyncStatus.PARTIAL, now, records_failed=3)
        await add_run(session_factory, nsf.id, SyncStatus.FAILED, now, records_failed=1)

        response = await client.get("/health")

        data = response.json()
        assert data["status"] == "degraded"
        assert data["successful_sources"] == 1
        assert data["failed_sources"] == 1
        by_name = {s["source_name"]: s for s in data["sources"]}
        assert by_name["world_bank"]["last_run_status"] == "partial"
        assert by_name["world_bank"]["last_run_errors"] == 3
        assert by_name["nsf_awards"]["last_run_status"] == "failed"


class TestSyncEndpoints:

    @pytest.mark.asyncio
    async def test_list_sources_with_checkpoint(self, client, checkpoints, data_source):
        await checkpoints.save_state(data_source.id, "last_offset", 820)

        response = await client.get("/sync/sources")

        assert response.status_code == 200
        sources = response.json()
        assert len(sources) == 1
        assert sources[0]["name"] == "world_bank"
        assert sources[0]["checkpoint"] == {"last_offset": 820}
        assert sources[0]["total_grants_fetched"] == 0

    @pytest.mark.asyncio
    async def test_list_runs_newest_first(self, client, session_factory, data_source):
        now = datetime.utcnow()
        for hours in (3, 2, 1):
            await add_run(
                session_factory, data_source.id, SyncStatus.SUCCESS, now - timedelta(hours=hours),
                records_fetched=hours
            )

        response = await client.get("/sync/runs", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [r["records_fetched"] for r in data["runs"]] == [1, 2]
        assert data["runs"][0]["source_name"] == "world_bank"
        assert data["runs"][0]["sync_type"] == "incremental"

    @pytest.mark.asyncio
    async def test_list_runs_limit_validated(self, client):
        response = await client.get("/sync/runs", params={"limit": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_trigger_sync(self, client, coordinator):
        response = await client.post("/sync/world_bank", params={"mode": "full"})

        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "world_bank"
        assert data["loaded"] == 4
        assert data["updated"] == 1
        coordinator.run_one.assert_awaited_once_with("world_bank", SyncMode.FULL)

    @pytest.mark.asyncio
    async def test_trigger_sync_defaults_to_incremental(self, client, coordinator):
        await client.post("/sync/world_bank")
        coordinator.run_one.assert_awaited_once_with("world_bank", SyncMode.INCREMENTAL)

    @pytest.mark.asyncio
    async def test_trigger_unknown_provider(self, client, coordinator):
        coordinator.run_one.side_effect = ConfigurationError("Unknown provider: made_up")

        response = await client.post("/sync/made_up")

        assert response.status_code == 404
        assert response.json()["detail"] == "Unknown provider: made_up"

    @pytest.mark.asyncio
    async def test_trigger_invalid_mode(self, client):
        response = await client.post("/sync/world_bank", params={"mode": "sideways"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_trigger_while_running_conflicts(self, client, coordinator):
        coordinator.run_one.side_effect = SyncInProgressError(
            "A sync for world_bank is already in progress",
            context={"source_name": "world_bank"}
        )

        response = await client.post("/sync/world_bank")

        assert response.status_code == 409
        assert response.json()["detail"] == "A sync for world_bank is already in progress"


def test_coordinator_shared_with_scheduler():
    """Manual triggers and scheduled runs go through one coordinator and limiter"""
    coordinator = get_coordinator()

    assert get_coordinator() is coordinator
    assert scheduler.coordinator is coordinator
    assert scheduler.coordinator.rate_limiter is coordinator.rate_limiter
