"""
Unit tests for client decorators
"""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, Mock, patch
from ingestion.decorators import ProviderClientDecorator, SinceFilterDecorator, StatusFilterDecorator
from schemas.sync import PageRequest


def make_inner():
    client = Mock()
    client.name = "grants_gov"
    client.page_size = 250
    client.data_source_id = 4
    client.fetch_page = AsyncMock(return_value=[{"id": "1"}])
    client.initialize = AsyncMock()
    client.close = AsyncMock()
    client.get_state = AsyncMock(return_value=750)
    client.save_state = AsyncMock()
    client.transform_record = Mock(return_value="normalized")
    return client


class TestProviderClientDecorator:

    @pytest.mark.asyncio
    async def test_delegates_every_operation(self):
        inner = make_inner()
        client = ProviderClientDecorator(inner)

        await client.initialize()
        records = await client.fetch_page(PageRequest(limit=10))
        state = await client.get_state("last_offset", 0)
        await client.save_state("last_offset", 760)
        await client.close()

        assert records == [{"id": "1"}]
        assert state == 750
        assert client.transform_record({"id": "1"}) == "normalized"
        inner.initialize.assert_awaited_once()
        inner.save_state.assert_awaited_once_with("last_offset", 760)
        inner.close.assert_awaited_once()

    def test_metadata_passes_through(self):
        client = ProviderClientDecorator(make_inner())

        assert client.name == "grants_gov"
        assert client.page_size == 250
        assert client.data_source_id == 4


class TestSinceFilterDecorator:

    @pytest.mark.asyncio
    async def test_sets_since_on_a_copy(self):
        inner = make_inner()
        client = SinceFilterDecorator(inner, lookback_days=7, now=datetime(2024, 1, 15))
        request = PageRequest(limit=100, offset=200)

        await client.fetch_page(request)

        sent = inner.fetch_page.await_args.args[0]
        assert sent.updated_since == datetime(2024, 1, 8)
        assert sent.posted_since == datetime(2024, 1, 8)
        assert sent.offset == 200
        # Caller's request untouched
        assert request.updated_since is None


class TestStackedDecorators:

    @pytest.mark.asyncio
    async def test_status_over_since(self):
        inner = make_inner()
        client = StatusFilterDecorator(
            SinceFilterDecorator(inner, lookback_days=1, now=datetime(2024, 1, 15)),
            "open"
        )

        await client.fetch_page(PageRequest(limit=50))

        sent = inner.fetch_page.await_args.args[0]
        assert sent.status == "open"
        assert sent.updated_since == datetime(2024, 1, 14)
        assert client.wrapped is inner
        assert client.name == "grants_gov"


class TestSinceCutoff:

    @pytest.mark.asyncio
    async def test_cutoff_fixed_for_the_whole_run(self):
        inner = make_inner()
        clock = Mock(side_effect=[datetime(2024, 1, 15, 23, 59), datetime(2024, 1, 16, 0, 5)])
        client = SinceFilterDecorator(inner, lookback_days=7, clock=clock)

        await client.fetch_page(PageRequest(limit=100, offset=0))
        await client.fetch_page(PageRequest(limit=100, offset=100))

        first, second = (call.args[0] for call in inner.fetch_page.await_args_list)
        assert first.updated_since == datetime(2024, 1, 8, 23, 59)
        assert second.updated_since == first.updated_since
        assert clock.call_count == 1

    @pytest.mark.asyncio
    async def test_provider_without_since_support_still_paged(self):
        inner = make_inner()
        inner.supports_since = False
        client = SinceFilterDecorator(inner, lookback_days=7, now=datetime(2024, 1, 15))

        with patch("ingestion.decorators.logger") as log:
            records = await client.fetch_page(PageRequest(limit=100))
            await client.fetch_page(PageRequest(limit=100, offset=100))

        assert records == [{"id": "1"}]
        log.info.assert_called_once()
        assert "grants_gov has no since filter" in log.info.call_args.args[0]
