"""
Closed registry of provider clients and the factory that builds them
"""

from typing import Dict, Type, Optional
from ingestion.base import ProviderClient
from ingestion.checkpoint import CheckpointStore
from ingestion.rate_limiter import RateLimiter
from ingestion.extractors.grants_gov import GrantsGovClient
from ingestion.extractors.nih_reporter import NihReporterClient
from ingestion.extractors.nsf_awards import NsfAwardsClient
from ingestion.extractors.world_bank import WorldBankClient
from ingestion.extractors.ukri_gateway import UkriGatewayClient
from ingestion.extractors.eu_funding_portal import EuFundingPortalClient
from ingestion.extractors.federal_register import FederalRegisterClient
from ingestion.extractors.california_grants import CaliforniaGrantsClient
from ingestion.extractors.sam_gov import SamGovClient
from ingestion.extractors.usaspending import UsaSpendingClient
from ingestion.extractors.canadian_open_gov import CanadianOpenGovClient
from ingestion.extractors.ny_state import NyStateClient
from ingestion.extractors.openalex import OpenAlexClient
from core.config import settings
from core.exceptions import ConfigurationError

# Sync order
PROVIDERS: Dict[str, Type[ProviderClient]] = {
    cls.name: cls
    for cls in (
        GrantsGovClient,
        FederalRegisterClient,
        NihReporterClient,
        NsfAwardsClient,
        CaliforniaGrantsClient,
        SamGovClient,
        UsaSpendingClient,
        CanadianOpenGovClient,
        EuFundingPortalClient,
        UkriGatewayClient,
        WorldBankClient,
        NyStateClient,
        OpenAlexClient,
    )
}


def build_client(
    name: str,
    data_source_id: int,
    checkpoints: CheckpointStore,
    **options
) -> ProviderClient:
    """
    Construct a fully configured client for one provider.

    Args:
        name: Registry key (data_sources.name)
        data_source_id: Provider row id the client reads and writes state for
        checkpoints: Checkpoint store the client delegates to
        **options: page_size, timeout, max_retries, retry_delay, transport

    Raises:
        ConfigurationError: Unknown provider name
    """
    client_cls = PROVIDERS.get(name)
    if client_cls is None:
        raise ConfigurationError(
            f"Unknown provider: {name}",
            context={"source_name": name, "known": sorted(PROVIDERS)}
        )
    return client_cls(data_source_id=data_source_id, checkpoints=checkpoints, **options)


def build_rate_limiter(limits: Optional[Dict[str, int]] = None) -> RateLimiter:
    """Limiter seeded with each provider's declared budget"""
    declared = {name: cls.rate_limit for name, cls in PROVIDERS.items() if cls.rate_limit}
    declared.update(limits or {})
    return RateLimiter(
        limits=declared,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        default_limit=settings.DEFAULT_RATE_LIMIT
    )
