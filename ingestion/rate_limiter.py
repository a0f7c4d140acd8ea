"""
Provider-keyed request budget consulted before every page fetch
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from core.exceptions import RateLimitExceeded
import logging

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    count: int = 0


class RateLimiter:
    """
    Fixed-window request counter per provider name.

    A provider without a configured limit is never throttled. State lives
    here rather than on client instances so providers could later run
    concurrently against one shared limiter.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, int]] = None,
        window_seconds: float = 3600,
        default_limit: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.limits = dict(limits or {})
        self.window_seconds = window_seconds
        self.default_limit = default_limit
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = asyncio.Lock()

    def limit_for(self, provider: str) -> Optional[int]:
        return self.limits.get(provider, self.default_limit)

    async def acquire(self, provider: str) -> None:
        """
        Spend one request of the provider's budget.

        Raises:
            RateLimitExceeded: the current window's budget is spent
        """
        limit = self.limit_for(provider)
        if limit is None:
            return

        async with self._lock:
            now = self._clock()
            window = self._windows.get(provider)
            if window is None or now - window.started_at >= self.window_seconds:
                window = _Window(started_at=now)
                self._windows[provider] = window

            if window.count >= limit:
                retry_after = int(self.window_seconds - (now - window.started_at)) + 1
                raise RateLimitExceeded(
                    f"Rate limit of {limit} requests per {self.window_seconds}s reached for {provider}",
                    context={"source_name": provider, "limit": limit},
                    retry_after=retry_after
                )

            window.count += 1

    def remaining(self, provider: str) -> Optional[int]:
        limit = self.limit_for(provider)
        if limit is None:
            return None
        window = self._windows.get(provider)
        if window is None or self._clock() - window.started_at >= self.window_seconds:
            return limit
        return max(limit - window.count, 0)

    def reset(self, provider: Optional[str] = None) -> None:
        if provider is None:
            self._windows.clear()
        else:
            self._windows.pop(provider, None)
