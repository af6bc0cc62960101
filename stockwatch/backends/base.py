"""
Common behaviour for backend adapters.

Every adapter talks HTTP through one httpx.AsyncClient configured from its
BackendConfig and gets, for free:
- per-minute and per-hour sliding-window rate limiting
- a polite minimum interval between requests (longer for scraped sites)
- retries with exponential backoff for retryable failures
- classification of transport/HTTP failures into BackendError kinds

Adapters report failures by raising BackendError, never by returning a
placeholder result.
"""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import httpx

from stockwatch.backends.config import BackendConfig, BackendKind
from stockwatch.core.exceptions import BackendError, BackendErrorKind
from stockwatch.core.metrics import BackendMetrics, MetricsCollector
from stockwatch.core.typing import utc_now
from stockwatch.schemas import AvailabilityRequest, AvailabilityResult, HealthStatus

# Minimum spacing between requests is one minute divided by the per-minute budget
BASE_REQUEST_INTERVAL = 60.0
SCRAPING_MIN_INTERVAL = 2.0

# Rotate through multiple user agents for scraped sites
USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]

IN_STOCK_STATUSES = {"in_stock", "low_stock"}
KNOWN_STATUSES = {"in_stock", "low_stock", "out_of_stock", "pre_order", "discontinued", "unknown"}

_STATUS_ALIASES = {
    "instock": "in_stock",
    "available": "in_stock",
    "limited supply": "low_stock",
    "limitedavailability": "low_stock",
    "limited": "low_stock",
    "outofstock": "out_of_stock",
    "soldout": "out_of_stock",
    "sold out": "out_of_stock",
    "not available": "out_of_stock",
    "unavailable": "out_of_stock",
    "preorder": "pre_order",
    "pre-order": "pre_order",
    "backorder": "pre_order",
    "discontinued": "discontinued",
}


def normalize_status(raw: Any, in_stock: Optional[bool] = None) -> str:
    """Map a backend's availability wording onto the shared status vocabulary."""
    if isinstance(raw, str) and raw.strip():
        value = raw.strip().lower()
        # schema.org availability URLs: https://schema.org/InStock
        value = value.rsplit("/", 1)[-1]
        if value in KNOWN_STATUSES:
            return value
        if value in _STATUS_ALIASES:
            return _STATUS_ALIASES[value]
    if in_stock is None:
        return "unknown"
    return "in_stock" if in_stock else "out_of_stock"


def parse_price(value: Any) -> Optional[float]:
    """Parse prices like 19.99, "19.99" or "$1,299.00"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace("$", "").replace(",", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return None


class BaseBackend(ABC):
    kind: BackendKind

    def __init__(
        self,
        config: BackendConfig,
        metrics: Optional[MetricsCollector] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.metrics = metrics or MetricsCollector()
        self._client = client
        self._minute_window: Deque[float] = deque()
        self._hour_window: Deque[float] = deque()
        self._last_request_at = 0.0
        self._pacing_lock = asyncio.Lock()
        self.min_request_interval = self._calculate_min_request_interval()

    @property
    def backend_id(self) -> str:
        return self.config.id

    # --- adapter contract -------------------------------------------------

    @abstractmethod
    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityResult:
        """Current availability of one product at this backend."""

    @abstractmethod
    async def search_products(self, query: str) -> List[AvailabilityResult]:
        """Free-text product search at this backend."""

    async def get_health_status(self) -> HealthStatus:
        """Probe the backend. Raises BackendError when the probe fails."""
        started = time.perf_counter()
        await self._request("GET", self.config.health_path)
        elapsed_ms = (time.perf_counter() - started) * 1000
        return HealthStatus(
            backend_id=self.backend_id,
            is_healthy=True,
            response_time_ms=round(elapsed_ms, 1),
            success_rate=self.get_metrics().success_rate,
            last_checked=utc_now(),
        )

    def get_metrics(self) -> BackendMetrics:
        return self.metrics.snapshot(self.backend_id)

    # --- HTTP plumbing ----------------------------------------------------

    def _calculate_min_request_interval(self) -> float:
        interval = BASE_REQUEST_INTERVAL / max(1, self.config.rate_limit.requests_per_minute)
        if self.config.kind == BackendKind.SCRAPING.value:
            return max(interval, SCRAPING_MIN_INTERVAL)
        return interval

    def _default_headers(self) -> Dict[str, str]:
        if self.config.kind == BackendKind.SCRAPING.value:
            return {
                "User-Agent": random.choice(USER_AGENTS),
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
                "DNT": "1",
                "Upgrade-Insecure-Requests": "1",
            }
        return {"Accept": "application/json", "User-Agent": "Stockwatch/1.0"}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                follow_redirects=True,
                headers={**self._default_headers(), **dict(self.config.headers)},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _check_rate_limit(self) -> bool:
        """Sliding windows over the last minute and hour. Records the request when allowed."""
        now = time.monotonic()
        while self._minute_window and now - self._minute_window[0] >= 60:
            self._minute_window.popleft()
        while self._hour_window and now - self._hour_window[0] >= 3600:
            self._hour_window.popleft()

        limits = self.config.rate_limit
        if len(self._minute_window) >= limits.requests_per_minute:
            return False
        if len(self._hour_window) >= limits.requests_per_hour:
            return False

        self._minute_window.append(now)
        self._hour_window.append(now)
        return True

    async def _enforce_polite_delay(self) -> None:
        async with self._pacing_lock:
            wait = self.min_request_interval - (time.monotonic() - self._last_request_at)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request_at = time.monotonic()

    def _auth(self, params: Dict[str, Any], headers: Dict[str, str]) -> None:
        """Attach credentials. Adapters override for non-bearer schemes."""
        if self.config.api_key:
            auth_param = self.config.options.get("auth_param")
            if auth_param:
                params[auth_param] = self.config.api_key
            else:
                headers["Authorization"] = f"Bearer {self.config.api_key}"

    def _error(
        self,
        message: str,
        kind: BackendErrorKind,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> BackendError:
        return BackendError(message, self.backend_id, kind, status_code, retryable)

    def _classify_status(self, status_code: int) -> BackendError:
        if status_code == 429:
            return self._error("Rate limit exceeded", BackendErrorKind.RATE_LIMIT, status_code, retryable=True)
        if status_code in (401, 403):
            message = (
                "Access forbidden - possible bot detection"
                if self.config.kind == BackendKind.SCRAPING.value
                else "Authentication failed"
            )
            return self._error(message, BackendErrorKind.AUTH, status_code)
        if status_code == 404:
            return self._error("Product not found", BackendErrorKind.NOT_FOUND, status_code)
        if status_code >= 500:
            return self._error(f"Server error {status_code}", BackendErrorKind.SERVER_ERROR, status_code, retryable=True)
        return self._error(f"Unexpected status {status_code}", BackendErrorKind.SERVER_ERROR, status_code)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one logical request, retrying retryable failures per the retry policy."""
        params: Dict[str, Any] = dict(kwargs.pop("params", None) or {})
        headers: Dict[str, str] = dict(kwargs.pop("headers", None) or {})
        self._auth(params, headers)

        attempts = max(1, self.config.retry.max_attempts)
        for attempt in range(attempts):
            if not self._check_rate_limit():
                # Retrying inside the same window would only burn the budget further
                raise self._error("Rate limit exceeded", BackendErrorKind.RATE_LIMIT, 429, retryable=True)

            await self._enforce_polite_delay()

            try:
                response = await self.client.request(method, url, params=params, headers=headers, **kwargs)
            except httpx.TimeoutException as e:
                error = self._error(f"Request timed out: {e}", BackendErrorKind.TIMEOUT, retryable=True)
                cause: Exception = e
            except httpx.TransportError as e:
                error = self._error(f"Network error: {e}", BackendErrorKind.NETWORK, retryable=True)
                cause = e
            else:
                if response.is_success:
                    return response
                error = self._classify_status(response.status_code)
                cause = httpx.HTTPStatusError(
                    f"{response.status_code} from {url}", request=response.request, response=response
                )

            if not error.retryable or attempt == attempts - 1:
                raise error from cause

            # Exponential backoff
            await asyncio.sleep(self.config.retry.backoff * (2**attempt))

        raise AssertionError("unreachable")  # pragma: no cover

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self._request("GET", url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise self._error(f"Invalid JSON from {url}", BackendErrorKind.PARSING) from e
