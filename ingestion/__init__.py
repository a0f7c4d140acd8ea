"""
Sync pipeline components for funding-opportunity ingestion.

Modules:
    base: ProviderClient ABC with pooled HTTP, retry and circuit breaker
    decorators: Client wrappers for incremental and status-filtered runs
    rate_limiter: Provider-keyed request budget consulted before each page
    checkpoint: Per-provider resume state
    runner: Per-provider sync orchestrator
    coordinator: Sequential run over every active provider
    scheduler: APScheduler integration for the nightly incremental run

Subpackages:
    extractors: One client per provider plus the registry and factory
    transformers: Field-level normalization helpers
    loaders: Bulk grant upsert with dependent-record fan-out

Architecture:
    Each provider page flows through the same path:

    1. Fetch - rate-limiter gate, then the client's own pagination idiom
    2. Transform - map the raw record to the canonical grant shape
    3. Load - bulk upsert, then replace the grant's dependent records
    4. Checkpoint - persist the next offset so a run can resume

    Bad records and bad pages are counted and skipped; only a fatal
    provider error ends that provider's run, and siblings still run.

Usage:
    from core.database import async_session_maker
    from ingestion.coordinator import RunCoordinator
    from models.base import SyncMode

    coordinator = RunCoordinator(async_session_maker)
    results = await coordinator.run(SyncMode.INCREMENTAL)

    for result in results:
        print(f"{result.source}: {result.loaded} created, {result.errors} errors")
"""

__all__ = [
    "ProviderClient",
    "ProviderClientDecorator",
    "SinceFilterDecorator",
    "StatusFilterDecorator",
    "RateLimiter",
    "CheckpointStore",
    "GrantUpserter",
    "SyncOrchestrator",
    "RunCoordinator",
    "SyncScheduler",
]
