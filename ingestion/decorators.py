"""
Composable wrappers over a ProviderClient.

A decorator is itself a ProviderClient-shaped object, so decorators stack:

    client = StatusFilterDecorator(SinceFilterDecorator(client, lookback_days=7), "open")

Only fetch_page is ever overridden; every other operation reaches the
wrapped client unchanged.
"""

from typing import List, Dict, Any, Optional, Callable
from datetime import datetime, timedelta
from schemas.normalized import NormalizedGrantData
from schemas.sync import PageRequest
import logging

logger = logging.getLogger(__name__)


class ProviderClientDecorator:
    """Delegates every operation to the wrapped client"""

    def __init__(self, client):
        self.client = client

    def __getattr__(self, item):
        # Provider metadata (name, page_size, data_source_id, ...)
        if item == "client":
            raise AttributeError(item)
        return getattr(self.client, item)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.client!r}>"

    @property
    def wrapped(self):
        """Innermost undecorated client"""
        client = self.client
        while isinstance(client, ProviderClientDecorator):
            client = client.client
        return client

    async def initialize(self) -> None:
        await self.client.initialize()

    async def close(self) -> None:
        await self.client.close()

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        return await self.client.fetch_page(request)

    def transform_record(self, raw: Dict[str, Any]) -> Optional[NormalizedGrantData]:
        return self.client.transform_record(raw)

    async def get_state(self, key: str, default: Any = None) -> Any:
        return await self.client.get_state(key, default)

    async def save_state(self, key: str, value: Any) -> None:
        await self.client.save_state(key, value)


class SinceFilterDecorator(ProviderClientDecorator):
    """
    Incremental mode: restrict every page to records modified or posted
    within the lookback window.

    The cutoff is fixed on first use, so every page of one run shares it.
    """

    def __init__(
        self,
        client,
        lookback_days: int = 7,
        now: Optional[datetime] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        super().__init__(client)
        self.lookback_days = lookback_days
        self._now = now
        self._clock = clock
        self._since: Optional[datetime] = None

    @property
    def since(self) -> datetime:
        if self._since is None:
            self._since = (self._now or self._clock()) - timedelta(days=self.lookback_days)
            if not getattr(self.wrapped, "supports_since", True):
                logger.info(
                    f"{self.name} has no since filter; incremental run re-reads from the checkpoint"
                )
        return self._since

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        since = self.since
        return await self.client.fetch_page(
            request.model_copy(update={"updated_since": since, "posted_since": since})
        )


class StatusFilterDecorator(ProviderClientDecorator):
    """Restrict every page to one provider-level status"""

    def __init__(self, client, status: str):
        super().__init__(client)
        self.status = status

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        return await self.client.fetch_page(request.model_copy(update={"status": self.status}))
