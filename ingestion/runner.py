# ============================================================================
# File: ingestion/runner.py
# Description: Per-provider sync orchestrator with page- and record-level recovery
# ============================================================================
"""
Sync Orchestrator - drives one provider from its start offset to exhaustion.

This module provides robust per-provider orchestration with:
- Page loop over fetch -> normalize -> upsert -> checkpoint
- Partial failure support (bad records and bad pages are counted, not fatal)
- Configurable page-failure policy (skip the page or halt the provider)
- Resumable progress (checkpoint saved after every page)
- Accurate sync log rows and cumulative provider counters
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional
from sqlalchemy.ext.asyncio import async_sessionmaker
import time
import logging

from ingestion.base import ProviderClient
from ingestion.checkpoint import CheckpointStore, LAST_OFFSET, LAST_PAGE
from ingestion.loaders.grant_upserter import GrantUpserter
from ingestion.rate_limiter import RateLimiter
from models.base import SyncMode, SyncStatus
from models.data_source import DataSource
from models.sync_log import SyncLog
from schemas.normalized import NormalizedGrantData
from schemas.sync import PageRequest, SyncResult
from core.config import settings
from core.exceptions import SyncException, BatchUpsertError, FatalProviderError

logger = logging.getLogger(__name__)

PAGE_FAILURE_POLICIES = ("skip", "halt")

RESULT_STATUS = {
    "success": SyncStatus.SUCCESS,
    "partial_success": SyncStatus.PARTIAL,
    "failed": SyncStatus.FAILED,
}


class SyncPhase(str, Enum):
    INITIALIZING = "initializing"
    FETCHING = "fetching"
    PROCESSING = "processing"
    CHECKPOINTING = "checkpointing"
    EXHAUSTED = "exhausted"
    FATAL_ERROR = "fatal_error"


@dataclass
class Cursor:
    """Position of the next page to fetch"""
    offset: int = 0
    page: int = 1


class SyncOrchestrator:
    """
    Production-grade per-provider sync orchestrator.

    Responsibilities:
    - Resolve the start offset for the run mode
    - Gate every page fetch on the rate limiter
    - Normalize and upsert records in bounded chunks
    - Advance the checkpoint after every page
    - Record an accurate sync log row and provider counters, even on failure
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        rate_limiter: RateLimiter,
        checkpoints: Optional[CheckpointStore] = None,
        upserter: Optional[GrantUpserter] = None,
        batch_size: Optional[int] = None,
        page_failure_policy: Optional[str] = None,
        max_consecutive_failures: Optional[int] = None,
        max_records: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.rate_limiter = rate_limiter
        self.checkpoints = checkpoints or CheckpointStore(session_factory)
        self.upserter = upserter or GrantUpserter(session_factory, settings.FANOUT_CONCURRENCY)
        self.batch_size = max(1, batch_size or settings.UPSERT_BATCH_SIZE)
        self.page_failure_policy = page_failure_policy or settings.PAGE_FAILURE_POLICY
        self.max_consecutive_failures = (
            max_consecutive_failures
            if max_consecutive_failures is not None
            else settings.MAX_CONSECUTIVE_PAGE_FAILURES
        )
        self.max_records = max_records if max_records is not None else settings.MAX_RECORDS_PER_SYNC
        self.phase: Optional[SyncPhase] = None

        if self.page_failure_policy not in PAGE_FAILURE_POLICIES:
            raise ValueError(
                f"page_failure_policy must be one of {PAGE_FAILURE_POLICIES}, got {self.page_failure_policy!r}"
            )

    async def run(self, client: ProviderClient, mode: SyncMode = SyncMode.INCREMENTAL) -> SyncResult:
        """
        Sync one provider to exhaustion.

        Never raises: a fatal provider error marks the result failed and
        adds one to its errors.

        Args:
            client: Provider client, possibly wrapped in decorators
            mode: FULL resets the checkpoint, RESUME continues from it,
                INCREMENTAL starts at 0 (since-filter applied by the caller)

        Returns:
            SyncResult with total/loaded/updated/errors and the run status
        """
        mode = SyncMode(mode)
        result = SyncResult(source=client.name)
        cursor = Cursor()
        sync_log_id = None
        started_at = datetime.utcnow()
        started = time.monotonic()

        try:
            self._transition(client, SyncPhase.INITIALIZING, mode=mode.value)
            await client.initialize()
            cursor = await self._start_cursor(client, mode)
            sync_log_id = await self._start_sync_log(client, mode, cursor, started_at)

            await self._sync_pages(client, cursor, result)
            self._transition(client, SyncPhase.EXHAUSTED, offset=cursor.offset)

        except Exception as e:
            self._transition(client, SyncPhase.FATAL_ERROR, offset=cursor.offset)
            result.errors += 1
            result.status = "failed"
            result.error_message = e.message if isinstance(e, SyncException) else str(e)

            if isinstance(e, SyncException):
                logger.error(
                    f"Sync failed for {client.name}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
            else:
                logger.exception(f"Unexpected error syncing {client.name}")

        finally:
            result.duration = round(time.monotonic() - started, 3)
            if result.status != "failed":
                result.status = "success" if result.errors == 0 else "partial_success"
                if result.errors:
                    result.error_message = f"{result.errors} records or pages failed"

            await self._finalize(client, result, sync_log_id, cursor)
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Failed to close client for {client.name}: {e}")

        logger.info(
            f"Sync {result.status} for {client.name} - "
            f"Total: {result.total}, Loaded: {result.loaded}, Updated: {result.updated}, "
            f"Errors: {result.errors}, Duration: {result.duration}s"
        )
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _transition(self, client: ProviderClient, phase: SyncPhase, **context: Any) -> None:
        self.phase = phase
        details = " ".join(f"{k}={v}" for k, v in context.items())
        message = f"[{client.name}] {phase.value} {details}".rstrip()
        if phase in (SyncPhase.INITIALIZING, SyncPhase.EXHAUSTED):
            logger.info(message)
        elif phase == SyncPhase.FATAL_ERROR:
            logger.error(message)
        else:
            logger.debug(message)

    async def _start_cursor(self, client: ProviderClient, mode: SyncMode) -> Cursor:
        if mode == SyncMode.FULL:
            await self.checkpoints.reset(client.data_source_id)
            return Cursor()

        if mode == SyncMode.RESUME:
            offset = int(await client.get_state(LAST_OFFSET, 0) or 0)
            page = await client.get_state(LAST_PAGE)
            return Cursor(offset=offset, page=int(page) if page else offset // client.page_size + 1)

        return Cursor()

    async def _sync_pages(self, client: ProviderClient, cursor: Cursor, result: SyncResult) -> None:
        limit = client.page_size
        consecutive_failures = 0

        while True:
            remaining = None
            if self.max_records is not None:
                remaining = self.max_records - result.total
                if remaining <= 0:
                    logger.info(f"[{client.name}] record cap {self.max_records} reached")
                    return

            request = PageRequest(limit=limit, offset=cursor.offset, page=cursor.page)
            self._transition(client, SyncPhase.FETCHING, offset=cursor.offset, page=cursor.page)

            try:
                await self.rate_limiter.acquire(client.name)
                records = await client.fetch_page(request)
            except Exception as e:
                consecutive_failures += 1
                self._page_failed(client, cursor, e, consecutive_failures)
                result.errors += 1
                cursor.offset += limit
                cursor.page += 1
                continue

            consecutive_failures = 0
            page_length = len(records)
            if not records:
                return

            capped = remaining is not None and page_length > remaining
            if capped:
                records = records[:remaining]

            result.total += len(records)

            self._transition(client, SyncPhase.PROCESSING, records=len(records))
            await self._process_page(client, records, result)

            self._transition(client, SyncPhase.CHECKPOINTING)
            cursor.offset += len(records)
            # A capped page stops mid-page; page numbering follows the offset
            cursor.page = cursor.offset // limit + 1 if capped else cursor.page + 1
            await client.save_state(LAST_OFFSET, cursor.offset)
            await client.save_state(LAST_PAGE, cursor.page)

            if page_length < limit or capped:
                return

    def _page_failed(self, client: ProviderClient, cursor: Cursor, error: Exception, consecutive: int) -> None:
        """Log a failed page, or raise FatalProviderError when the policy says stop"""
        context = {
            "source_name": client.name,
            "offset": cursor.offset,
            "page": cursor.page,
            "consecutive_failures": consecutive,
            "policy": self.page_failure_policy,
        }

        if self.page_failure_policy == "halt":
            raise FatalProviderError(
                f"Page fetch failed at offset {cursor.offset}; halting provider",
                context=context,
                original_exception=error
            )

        if consecutive > self.max_consecutive_failures:
            raise FatalProviderError(
                f"Too many consecutive page failures (>{self.max_consecutive_failures}), aborting",
                context=context,
                original_exception=error
            )

        if isinstance(error, SyncException):
            context["error"] = error.to_dict()
        else:
            context["error"] = f"{type(error).__name__}: {error}"
        logger.error(
            f"Page fetch failed for {client.name} at offset {cursor.offset}, skipping page",
            extra={"error_context": context}
        )

    async def _process_page(self, client: ProviderClient, records: List[Dict[str, Any]], result: SyncResult) -> None:
        for start in range(0, len(records), self.batch_size):
            chunk = records[start:start + self.batch_size]
            normalized = self._normalize_chunk(client, chunk, result)
            if not normalized:
                continue

            try:
                batch = await self.upserter.upsert_batch(client.data_source_id, normalized)
            except BatchUpsertError:
                # No partial credit for a failed bulk write
                result.errors += len(normalized)
                continue

            result.loaded += batch.created
            result.updated += batch.updated
            result.errors += batch.fanout_errors

    def _normalize_chunk(
        self,
        client: ProviderClient,
        chunk: List[Dict[str, Any]],
        result: SyncResult
    ) -> List[NormalizedGrantData]:
        normalized = []
        for raw in chunk:
            try:
                record = client.transform_record(raw)
            except Exception as e:
                result.errors += 1
                error_context = e.to_dict() if isinstance(e, SyncException) else {"error_message": str(e)}
                logger.warning(
                    f"Normalization failed for {client.name}: {e}",
                    extra={"error_context": error_context}
                )
                continue

            if record is None:
                result.errors += 1
                logger.debug(f"Dropped {client.name} record without id or title")
                continue

            normalized.append(record)
        return normalized

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _start_sync_log(
        self,
        client: ProviderClient,
        mode: SyncMode,
        cursor: Cursor,
        started_at: datetime
    ) -> int:
        async with self.session_factory() as session:
            sync_log = SyncLog(
                data_source_id=client.data_source_id,
                sync_type=mode,
                status=SyncStatus.RUNNING,
                started_at=started_at,
                checkpoint_before=str(cursor.offset)
            )
            session.add(sync_log)
            await session.commit()
            logger.debug(f"Started sync log {sync_log.run_id} for {client.name}")
            return sync_log.id

    async def _finalize(
        self,
        client: ProviderClient,
        result: SyncResult,
        sync_log_id: Optional[int],
        cursor: Cursor
    ) -> None:
        """Flush counters and close the sync log row; failures here are logged only"""
        try:
            async with self.session_factory() as session:
                data_source = await session.get(DataSource, client.data_source_id)
                if data_source is not None:
                    data_source.last_successful_sync = datetime.utcnow()
                    data_source.total_grants_fetched = (data_source.total_grants_fetched or 0) + result.total
                    data_source.total_grants_loaded = (data_source.total_grants_loaded or 0) + result.loaded

                if sync_log_id is not None:
                    sync_log = await session.get(SyncLog, sync_log_id)
                    if sync_log is not None:
                        sync_log.status = RESULT_STATUS[result.status]
                        sync_log.completed_at = datetime.utcnow()
                        sync_log.duration_seconds = result.duration
                        sync_log.records_fetched = result.total
                        sync_log.records_created = result.loaded
                        sync_log.records_updated = result.updated
                        sync_log.records_failed = result.errors
                        sync_log.checkpoint_after = str(cursor.offset)
                        sync_log.error_message = result.error_message

                await session.commit()

        except Exception as e:
            logger.error(
                f"Failed to record sync outcome for {client.name}: {e}",
                extra={"error_context": {"source_name": client.name, "sync_log_id": sync_log_id}}
            )
