"""
Run Coordinator - syncs every active provider, one after another
"""

from typing import List, Dict, Any, Optional, Iterable
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from ingestion.checkpoint import CheckpointStore
from ingestion.decorators import SinceFilterDecorator
from ingestion.extractors.registry import PROVIDERS, build_client, build_rate_limiter
from ingestion.rate_limiter import RateLimiter
from ingestion.runner import SyncOrchestrator
from models.base import SyncMode
from models.data_source import DataSource
from schemas.sync import SyncResult
from core.config import settings
from core.exceptions import ConfigurationError, SyncInProgressError

logger = logging.getLogger(__name__)


class RunCoordinator:
    """
    Iterates the provider registry in order and runs the orchestrator for
    each provider that has an active data_sources row.

    A provider failure never stops its siblings; the only error raised to
    the caller is ConfigurationError when the provider rows cannot be read.

    One instance is shared by the scheduler and the API, so its
    per-provider locks keep a provider from running twice at once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        rate_limiter: Optional[RateLimiter] = None,
        checkpoints: Optional[CheckpointStore] = None,
        orchestrator: Optional[SyncOrchestrator] = None,
        client_options: Optional[Dict[str, Dict[str, Any]]] = None,
        lookback_days: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.rate_limiter = rate_limiter or build_rate_limiter()
        self.checkpoints = checkpoints or CheckpointStore(session_factory)
        self.orchestrator = orchestrator or SyncOrchestrator(
            session_factory,
            self.rate_limiter,
            checkpoints=self.checkpoints
        )
        self.client_options = client_options or {}
        self.lookback_days = lookback_days if lookback_days is not None else settings.INCREMENTAL_LOOKBACK_DAYS
        self._locks: Dict[str, asyncio.Lock] = {}

    async def load_sources(self) -> Dict[str, DataSource]:
        """
        Active provider rows keyed by name.

        Raises:
            ConfigurationError: The data_sources table could not be read
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(DataSource).where(DataSource.is_active.is_(True))
                )
                return {source.name: source for source in result.scalars().all()}
        except Exception as e:
            raise ConfigurationError(
                "Failed to load provider configuration",
                context={"table_name": "data_sources"},
                original_exception=e
            )

    def build(self, data_source: DataSource, mode: SyncMode):
        """Client for one provider row, wrapped for incremental mode"""
        client = build_client(
            data_source.name,
            data_source.id,
            self.checkpoints,
            **self.client_options.get(data_source.name, {})
        )
        if mode == SyncMode.INCREMENTAL:
            client = SinceFilterDecorator(client, lookback_days=self.lookback_days)
        return client

    async def run(self, mode: SyncMode = SyncMode.INCREMENTAL, only: Optional[Iterable[str]] = None) -> List[SyncResult]:
        """
        Sync every active registered provider sequentially.

        Args:
            mode: Run mode passed to each provider's orchestrator run
            only: Restrict the run to these provider names

        Returns:
            One SyncResult per provider that was attempted, in registry order
        """
        mode = SyncMode(mode)
        sources = await self.load_sources()
        selected = set(only) if only is not None else None

        results: List[SyncResult] = []
        for name in PROVIDERS:
            if selected is not None and name not in selected:
                continue

            data_source = sources.get(name)
            if data_source is None:
                logger.info(f"Skipping {name}: no active data source configured")
                continue

            try:
                results.append(await self._run_locked(data_source, mode))
            except SyncInProgressError:
                logger.warning(f"Skipping {name}: a sync is already in progress")

        failed = sum(1 for r in results if r.status == "failed")
        logger.info(
            f"Sync run ({mode.value}) finished: {len(results)} providers, {failed} failed, "
            f"{sum(r.loaded for r in results)} created, {sum(r.updated for r in results)} updated, "
            f"{sum(r.errors for r in results)} errors"
        )
        return results

    async def run_one(self, name: str, mode: SyncMode = SyncMode.INCREMENTAL) -> SyncResult:
        """
        Sync a single provider on demand.

        Raises:
            ConfigurationError: Unknown provider, or no active data source row
            SyncInProgressError: The provider is already syncing
        """
        mode = SyncMode(mode)
        if name not in PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider: {name}",
                context={"source_name": name, "known": list(PROVIDERS)}
            )

        sources = await self.load_sources()
        data_source = sources.get(name)
        if data_source is None:
            raise ConfigurationError(
                f"Provider {name} is not active",
                context={"source_name": name}
            )
        return await self._run_locked(data_source, mode)

    async def _run_locked(self, data_source: DataSource, mode: SyncMode) -> SyncResult:
        lock = self._locks.setdefault(data_source.name, asyncio.Lock())
        if lock.locked():
            raise SyncInProgressError(
                f"A sync for {data_source.name} is already in progress",
                context={"source_name": data_source.name}
            )
        async with lock:
            return await self._run_provider(data_source, mode)

    async def _run_provider(self, data_source: DataSource, mode: SyncMode) -> SyncResult:
        try:
            client = self.build(data_source, mode)
            logger.info(f"Running {mode.value} sync for {data_source.name}")
            return await self.orchestrator.run(client, mode)
        except Exception as e:
            logger.error(
                f"Sync for {data_source.name} failed before completion: {e}",
                extra={"error_context": {"source_name": data_source.name, "error_message": str(e)}}
            )
            return SyncResult(
                source=data_source.name,
                errors=1,
                status="failed",
                error_message=str(e)
            )
