"""
Integration tests for the per-provider sync pipeline
"""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from ingestion.runner import SyncOrchestrator, SyncPhase
from ingestion.decorators import SinceFilterDecorator
from ingestion.checkpoint import LAST_OFFSET, LAST_PAGE
from ingestion.loaders.grant_upserter import GrantUpserter
from ingestion.rate_limiter import RateLimiter
from models import Grant, GrantCategory, SyncLog
from models.base import SyncMode, SyncStatus
from schemas.sync import BatchResult
from core.exceptions import TransportError


def counting_upserter():
    """Upserter stand-in that reports every record as created"""
    async def upsert_batch(data_source_id, records):
        return BatchResult(created=len(records))

    upserter = MagicMock()
    upserter.upsert_batch = AsyncMock(side_effect=upsert_batch)
    return upserter


async def grant_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Grant))).scalar()


class TestPaginationScenarios:
    """Test page loop termination and offset bookkeeping"""

    @pytest.mark.asyncio
    async def test_short_page_terminates(self, session_factory, rate_limiter, checkpoints, fake_client):
        """500 records then 320: two fetches, 820 total"""
        client = fake_client(total=820, page_size=500)
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints, upserter=counting_upserter())

        result = await orchestrator.run(client, SyncMode.FULL)

        assert result.total == 820
        assert result.loaded == 820
        assert result.errors == 0
        assert result.status == "success"
        assert [r.offset for r in client.requests] == [0, 500]
        assert [r.page for r in client.requests] == [1, 2]
        assert await client.get_state(LAST_OFFSET) == 820
        assert await client.get_state(LAST_PAGE) == 3
        assert orchestrator.phase == SyncPhase.EXHAUSTED

    @pytest.mark.asyncio
    async def test_exact_multiple_needs_empty_page(self, session_factory, rate_limiter, checkpoints, fake_client):
        client = fake_client(total=6, page_size=3)
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints, upserter=counting_upserter())

        result = await orchestrator.run(client, SyncMode.FULL)

        assert result.total == 6
        assert [r.offset for r in client.requests] == [0, 3, 6]

    @pytest.mark.asyncio
    async def test_transport_error_skips_one_page(self, session_factory, rate_limiter, checkpoints, fake_client):
        """Failure at offset 2000 with page size 100: one error, resume at 2100"""
        client = fake_client(
            total=2150,
            page_size=100,
            failures={2000: TransportError("Connection reset", context={"api_url": "/projects"})}
        )
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints, upserter=counting_upserter())

        result = await orchestrator.run(client, SyncMode.FULL)

        offsets = [r.offset for r in client.requests]
        assert offsets[20:] == [2000, 2100]
        assert result.errors == 1
        assert result.total == 2050
        assert result.status == "partial_success"
        assert await client.get_state(LAST_OFFSET) == 2150

    @pytest.mark.asyncio
    async def test_max_records_cap(self, session_factory, rate_limiter, checkpoints, fake_client):
        client = fake_client(total=10, page_size=3)
        orchestrator = SyncOrchestrator(
            session_factory, rate_limiter, checkpoints, upserter=counting_upserter(), max_records=4
        )

        result = await orchestrator.run(client, SyncMode.FULL)

        assert result.total == 4
        assert len(client.requests) == 2
        assert await client.get_state(LAST_OFFSET) == 4
        # Stopped one record into page 2, so a resume re-requests page 2
        assert await client.get_state(LAST_PAGE) == 2


class TestRunModes:

    @pytest.mark.asyncio
    async def test_resume_starts_from_checkpoint(self, session_factory, rate_limiter, checkpoints, fake_client):
        client = fake_client(total=8, page_size=3)
        await client.save_state(LAST_OFFSET, 6)
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints, upserter=counting_upserter())

        result = await orchestrator.run(client, SyncMode.RESUME)

        assert client.requests[0].offset == 6
        assert client.requests[0].page == 3
        assert result.total == 2
        assert await client.get_state(LAST_OFFSET) == 8

    @pytest.mark.asyncio
    async def test_full_resets_checkpoint(self, session_factory, rate_limiter, checkpoints, fake_client):
        client = fake_client(total=2, page_size=3)
        await client.save_state(LAST_OFFSET, 600)
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints, upserter=counting_upserter())

        await orchestrator.run(client, SyncMode.FULL)

        assert client.requests[0].offset == 0
        assert await client.get_state(LAST_OFFSET) == 2

    @pytest.mark.asyncio
    async def test_incremental_empty_window(self, session_factory, rate_limiter, checkpoints, fake_client):
        """Nothing changed inside the lookback window: all-zero result"""
        inner = fake_client(records=[], page_size=3)
        client = SinceFilterDecorator(inner, lookback_days=7, now=datetime(2024, 1, 15))
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints)

        result = await orchestrator.run(client, SyncMode.INCREMENTAL)

        assert (result.total, result.loaded, result.updated, result.errors) == (0, 0, 0, 0)
        assert result.status == "success"
        assert inner.requests[0].updated_since == datetime(2024, 1, 8)
        assert inner.requests[0].offset == 0


class TestIdempotentLoad:
    """Test repeated runs against the real store"""

    @pytest.mark.asyncio
    async def test_repeated_full_runs_do_not_duplicate(self, session_factory, rate_limiter, checkpoints, fake_client, sample_records):
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints)

        first = await orchestrator.run(fake_client(records=sample_records), SyncMode.FULL)
        second = await orchestrator.run(fake_client(records=sample_records), SyncMode.FULL)

        assert (first.loaded, first.updated) == (5, 0)
        assert (second.loaded, second.updated) == (0, 5)
        assert await grant_count(session_factory) == 5

    @pytest.mark.asyncio
    async def test_changed_record_reported_as_update(self, session_factory, rate_limiter, checkpoints, fake_client):
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints)
        await orchestrator.run(fake_client(records=[{"id": "P1", "title": "Original Title"}]), SyncMode.FULL)

        result = await orchestrator.run(
            fake_client(records=[{"id": "P1", "title": "Revised Title", "amount": 5000}]),
            SyncMode.FULL
        )

        assert result.updated == 1
        assert result.loaded == 0
        async with session_factory() as session:
            grant = (await session.execute(select(Grant))).scalar_one()
        assert grant.title == "Revised Title"
        assert grant.total_funding_available == 5000.0

    @pytest.mark.asyncio
    async def test_bad_records_counted_not_fatal(self, session_factory, rate_limiter, checkpoints, fake_client, sample_records):
        records = sample_records + [
            {"id": "P200"},                                   # no title
            {"id": "P201", "title": "Negative", "amount": -5},  # fails validation
        ]
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints)

        result = await orchestrator.run(fake_client(records=records), SyncMode.FULL)

        assert result.total == 7
        assert result.loaded == 5
        assert result.errors == 2
        assert result.loaded + result.updated == result.total - result.errors
        assert result.status == "partial_success"

    @pytest.mark.asyncio
    async def test_overlong_title_truncated_not_rejected(self, session_factory, rate_limiter, checkpoints, fake_client):
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints)

        result = await orchestrator.run(fake_client(records=[{"id": "P1", "title": "T" * 1200}]), SyncMode.FULL)

        assert result.loaded == 1
        assert result.errors == 0
        async with session_factory() as session:
            grant = (await session.execute(select(Grant))).scalar_one()
        assert len(grant.title) == 1000

    @pytest.mark.asyncio
    async def test_bulk_upsert_failure_counts_whole_batch(self, session_factory, rate_limiter, checkpoints, fake_client):
        """A failed 10-record batch: 10 errors and no dependent rows"""
        records = [{"id": f"P{i}", "title": f"Grant {i}", "sector": "Water"} for i in range(10)]
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints, batch_size=10)

        with patch.object(
            GrantUpserter, "_bulk_upsert",
            side_effect=OperationalError("INSERT", {}, Exception("database is locked"))
        ):
            result = await orchestrator.run(fake_client(records=records, page_size=10), SyncMode.FULL)

        assert result.errors == 10
        assert result.loaded == 0
        assert await grant_count(session_factory) == 0
        async with session_factory() as session:
            categories = (await session.execute(select(func.count()).select_from(GrantCategory))).scalar()
        assert categories == 0


class TestRunBookkeeping:
    """Test sync log rows and provider counters"""

    @pytest.mark.asyncio
    async def test_sync_log_and_counters(self, session_factory, rate_limiter, checkpoints, fake_client, sample_records, data_source):
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints)
        client = fake_client(records=sample_records)

        await orchestrator.run(client, SyncMode.FULL)
        await orchestrator.run(fake_client(records=sample_records), SyncMode.FULL)

        assert client.initialized and client.closed
        async with session_factory() as session:
            logs = (await session.execute(select(SyncLog).order_by(SyncLog.id))).scalars().all()
            source = await session.get(type(data_source), data_source.id)

        assert len(logs) == 2
        assert logs[0].status == SyncStatus.SUCCESS
        assert logs[0].sync_type == SyncMode.FULL
        assert logs[0].records_fetched == 5
        assert logs[0].records_created == 5
        assert logs[1].records_updated == 5
        assert logs[0].checkpoint_after == "5"
        assert logs[0].completed_at is not None
        assert source.total_grants_fetched == 10
        assert source.total_grants_loaded == 5
        assert source.last_successful_sync is not None

    @pytest.mark.asyncio
    async def test_close_failure_keeps_result(self, session_factory, rate_limiter, checkpoints, fake_client, sample_records):
        orchestrator = SyncOrchestrator(session_factory, rate_limiter, checkpoints)
        client = fake_client(records=sample_records)
        client.close = AsyncMock(side_effect=RuntimeError("connection pool already closed"))

        result = await orchestrator.run(client, SyncMode.FULL)

        client.close.assert_awaited_once()
        assert result.status == "success"
        assert result.loaded == 5
        async with session_factory() as session:
            log = (await session.execute(select(SyncLog))).scalar_one()
        assert log.status == SyncStatus.SUCCESS


class TestPageFailurePolicy:

    @pytest.mark.asyncio
    async def test_halt_policy_fails_provider(self, session_factory, rate_limiter, checkpoints, fake_client):
        client = fake_client(total=9, page_size=3, failures={3: TransportError("Connection reset")})
        orchestrator = SyncOrchestrator(
            session_factory, rate_limiter, checkpoints,
            upserter=counting_upserter(), page_failure_policy="halt"
        )

        result = await orchestrator.run(client, SyncMode.FULL)

        assert result.status == "failed"
        assert result.errors == 1
        assert result.total == 3
        assert "halting provider" in result.error_message
        assert orchestrator.phase == SyncPhase.FATAL_ERROR
        # Checkpoint stays at the last good page
        assert await client.get_state(LAST_OFFSET) == 3
        assert client.closed

    @pytest.mark.asyncio
    async def test_consecutive_failures_escalate(self, session_factory, rate_limiter, checkpoints, fake_client):
        failures = {offset: TransportError("Service Unavailable") for offset in range(0, 30, 3)}
        client = fake_client(total=30, page_size=3, failures=failures)
        orchestrator = SyncOrchestrator(
            session_factory, rate_limiter, checkpoints,
            upserter=counting_upserter(), max_consecutive_failures=2
        )

        result = await orchestrator.run(client, SyncMode.FULL)

        # Two skipped pages, then the fatal one
        assert len(client.requests) == 3
        assert result.errors == 3
        assert result.status == "failed"

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_count(self, session_factory, rate_limiter, checkpoints, fake_client):
        failures = {0: TransportError("reset"), 6: TransportError("reset")}
        client = fake_client(total=10, page_size=3, failures=failures)
        orchestrator = SyncOrchestrator(
            session_factory, rate_limiter, checkpoints,
            upserter=counting_upserter(), max_consecutive_failures=1
        )

        result = await orchestrator.run(client, SyncMode.FULL)

        assert result.status == "partial_success"
        assert result.errors == 2
        assert result.total == 4

    @pytest.mark.asyncio
    async def test_rate_limit_counts_as_page_failure(self, session_factory, checkpoints, fake_client):
        limiter = RateLimiter(limits={"world_bank": 1})
        client = fake_client(total=9, page_size=3)
        orchestrator = SyncOrchestrator(
            session_factory, limiter, checkpoints,
            upserter=counting_upserter(), page_failure_policy="halt"
        )

        result = await orchestrator.run(client, SyncMode.FULL)

        # Second fetch never reaches the provider
        assert len(client.requests) == 1
        assert result.total == 3
        assert result.status == "failed"

    @pytest.mark.asyncio
    async def test_counters_flushed_on_fatal(self, session_factory, rate_limiter, checkpoints, fake_client, data_source):
        client = fake_client(total=9, page_size=3, failures={3: TransportError("reset")})
        orchestrator = SyncOrchestrator(
            session_factory, rate_limiter, checkpoints,
            upserter=counting_upserter(), page_failure_policy="halt"
        )

        await orchestrator.run(client, SyncMode.FULL)

        async with session_factory() as session:
            source = await session.get(type(data_source), data_source.id)
            sync_log = (await session.execute(select(SyncLog))).scalar_one()
        assert source.total_grants_fetched == 3
        assert source.total_grants_loaded == 3
        assert sync_log.status == SyncStatus.FAILED
        assert sync_log.records_failed == 1

    def test_unknown_policy_rejected(self, session_factory, rate_limiter):
        with pytest.raises(ValueError):
            SyncOrchestrator(session_factory, rate_limiter, page_failure_policy="retry")
