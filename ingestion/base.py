"""
Abstract base class for provider clients with resilient HTTP access.

Every provider subclass owns its pagination idiom and its record mapping;
the base class provides:
- Pooled httpx.AsyncClient lifecycle (initialize / close)
- Exponential backoff retry for transient failures
- Circuit breaker to stop hammering a failing provider
- Checkpoint delegation for the client's own provider id
- The transform_record template (identity check + validation wrapping)
"""

import httpx
import asyncio
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
from pydantic import ValidationError
from ingestion.checkpoint import CheckpointStore
from ingestion.transformers.normalizer import GrantNormalizer
from schemas.normalized import NormalizedGrantData
from schemas.sync import PageRequest
from core.config import settings
from core.exceptions import (
    TransportError,
    RateLimitExceeded,
    AuthenticationError,
    ResourceNotFoundError,
    NormalizationError
)
import logging

logger = logging.getLogger(__name__)


class ProviderClient(ABC):
    """
    Uniform capability set over one external funding provider.

    Subclasses declare the provider metadata as class attributes and
    implement fetch_page, record_id, record_title and map_record.

    Attributes:
        name: Registry key, matches data_sources.name
        display_name: Human-readable provider name
        base_url: Root URL the pooled HTTP client is bound to
        page_size: Default page size for this provider
        rate_limit: Requests per rate-limit window (None: unlimited)
        supports_since: Whether fetch_page honours updated_since / posted_since
    """

    name: str = ""
    display_name: str = ""
    base_url: str = ""
    page_size: int = 100
    rate_limit: Optional[int] = None
    supports_since: bool = True

    normalizer = GrantNormalizer

    def __init__(
        self,
        data_source_id: int,
        checkpoints: CheckpointStore,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.data_source_id = data_source_id
        self.checkpoints = checkpoints
        self.page_size = page_size or self.page_size
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.RETRY_DELAY
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = 60  # seconds

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name} data_source_id={self.data_source_id}>"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"grant-sync/1.0 (+mailto:{settings.CONTACT_EMAIL})"
        }

    async def initialize(self) -> None:
        """Open the pooled HTTP client (idempotent)"""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.default_headers(),
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True
        )
        logger.debug(f"Initialized client for {self.name} ({self.base_url})")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Capability interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        """
        Fetch one page of raw records.

        An empty list, or a list shorter than request.limit, signals that
        the provider is exhausted.
        """
        pass

    @abstractmethod
    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        """Provider-native identifier of a raw record"""
        pass

    @abstractmethod
    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        pass

    @abstractmethod
    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        """Map a raw record that has an id and a title to the canonical shape"""
        pass

    def transform_record(self, raw: Dict[str, Any]) -> Optional[NormalizedGrantData]:
        """
        Normalize one raw record.

        Returns:
            The canonical record, or None when the record has no
            provider-native id or no title

        Raises:
            NormalizationError: The mapped record failed validation
        """
        if not isinstance(raw, dict):
            return None

        source_identifier = self.record_id(raw)
        title = self.normalizer.clean_text(self.record_title(raw))
        if source_identifier in (None, "") or not title:
            return None

        try:
            return self.map_record(raw, str(source_identifier), title)
        except ValidationError as e:
            raise NormalizationError(
                f"Record {source_identifier} failed validation",
                context={
                    "source_name": self.name,
                    "source_identifier": str(source_identifier),
                    "field_errors": [
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                    ]
                },
                original_exception=e
            )

    async def get_state(self, key: str, default: Any = None) -> Any:
        return await self.checkpoints.get_state(self.data_source_id, key, default)

    async def save_state(self, key: str, value: Any) -> None:
        await self.checkpoints.save_state(self.data_source_id, key, value)

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info(f"Circuit breaker reset for {self.name}")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for {self.name}. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt)

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Raises:
            TransportError: Network failures, timeouts and 5xx after max retries
            RateLimitExceeded: HTTP 429 after max retries
            AuthenticationError: HTTP 401/403
            ResourceNotFoundError: HTTP 404
        """
        if self._client is None:
            await self.initialize()

        if self._is_circuit_open():
            raise TransportError(
                f"Circuit breaker is open for {self.name}",
                context={
                    "source_name": self.name,
                    "api_url": url,
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                logger.debug(f"{method} {url} attempt {attempt + 1}/{self.max_retries}")
                response = await self._client.request(method, url, params=params, json=json)

            except httpx.TimeoutException as e:
                if not last_attempt:
                    delay = self._backoff(attempt)
                    logger.warning(f"Request timeout for {self.name}. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise TransportError(
                    f"Request timeout after {self.max_retries} retries",
                    context={
                        "api_url": url,
                        "source_name": self.name,
                        "timeout": self.timeout,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )

            except httpx.HTTPError as e:
                if not last_attempt:
                    delay = self._backoff(attempt)
                    logger.warning(f"Network error for {self.name}. Retrying in {delay} seconds: {e}")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise TransportError(
                    f"Network error after {self.max_retries} retries",
                    context={
                        "api_url": url,
                        "source_name": self.name,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )

            status = response.status_code

            if status in (401, 403):
                self._record_failure()
                raise AuthenticationError(
                    f"Authentication failed for {url}",
                    context={"status_code": status, "api_url": url, "source_name": self.name}
                )

            if status == 404:
                self._record_failure()
                raise ResourceNotFoundError(
                    f"Resource not found: {url}",
                    context={"status_code": 404, "api_url": url, "source_name": self.name}
                )

            if status == 429:
                retry_after = self._retry_after(response, attempt)
                if not last_attempt:
                    logger.warning(f"Rate limited by {self.name}. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                self._record_failure()
                raise RateLimitExceeded(
                    f"Rate limit exceeded for {url}",
                    context={
                        "status_code": 429,
                        "api_url": url,
                        "source_name": self.name,
                        "retry_count": attempt + 1
                    },
                    retry_after=int(retry_after)
                )

            if status >= 500:
                if not last_attempt:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"Server error {status} from {self.name}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise TransportError(
                    f"Server error after {self.max_retries} retries",
                    context={
                        "status_code": status,
                        "api_url": url,
                        "source_name": self.name,
                        "retry_count": attempt + 1,
                        "response_body": response.text[:500]
                    }
                )

            if status >= 400:
                self._record_failure()
                raise TransportError(
                    f"Request rejected with HTTP {status}",
                    context={
                        "status_code": status,
                        "api_url": url,
                        "source_name": self.name,
                        "response_body": response.text[:500]
                    }
                )

            self._record_success()
            return response

        # Unreachable while max_retries >= 1
        raise TransportError("Max retries exceeded", context={"api_url": url, "source_name": self.name})

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        header = response.headers.get("Retry-After")
        try:
            return max(float(header), 0.0)
        except (TypeError, ValueError):
            return self._backoff(attempt)

    async def _request_json(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> Any:
        response = await self._request_with_retry(method, url, params=params, json=json)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                "Failed to parse JSON response",
                context={
                    "api_url": url,
                    "source_name": self.name,
                    "response_body": response.text[:500]
                },
                original_exception=e
            )

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request_json("GET", url, params=params)

    async def post_json(self, url: str, body: Dict[str, Any], params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request_json("POST", url, params=params, json=body)
