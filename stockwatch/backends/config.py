"""
Backend configuration.

BackendConfig is immutable once loaded. The only field that changes at runtime
is ``is_active``, and the registry changes it by swapping in a copy made with
``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, List, Mapping, Optional

from stockwatch.core.config import Settings, settings as default_settings


class BackendKind(str, Enum):
    API = "api"  # Direct retailer REST API
    AFFILIATE = "affiliate"  # Affiliate/partner product API
    SCRAPING = "scraping"  # Scraped HTML product pages


@dataclass(frozen=True)
class RateLimit:
    requests_per_minute: int
    requests_per_hour: int


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: float = 1.0  # seconds, doubled after every retry


@dataclass(frozen=True)
class BackendConfig:
    id: str
    name: str
    slug: str
    kind: str  # Parsed into BackendKind at registration
    base_url: str
    rate_limit: RateLimit
    timeout: float = 10.0  # seconds
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    is_active: bool = True
    api_key: Optional[str] = field(default=None, repr=False)
    website: Optional[str] = None
    health_path: str = "/"
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


def default_backend_configs(config: Settings = default_settings) -> List[BackendConfig]:
    """Static backend catalogue. API-keyed backends are active only with a key."""
    return [
        BackendConfig(
            id="best-buy",
            name="Best Buy",
            slug="best-buy",
            kind=BackendKind.API.value,
            base_url="https://api.bestbuy.com/v1",
            api_key=config.BEST_BUY_API_KEY or None,
            website="https://www.bestbuy.com",
            rate_limit=RateLimit(requests_per_minute=5, requests_per_hour=100),
            timeout=10.0,
            retry=RetryPolicy(max_attempts=3, backoff=1.0),
            is_active=bool(config.BEST_BUY_API_KEY),
            options=MappingProxyType({"auth_param": "apiKey"}),
        ),
        BackendConfig(
            id="walmart",
            name="Walmart",
            slug="walmart",
            kind=BackendKind.AFFILIATE.value,
            base_url="https://api.walmartlabs.com/v1",
            api_key=config.WALMART_API_KEY or None,
            website="https://www.walmart.com",
            rate_limit=RateLimit(requests_per_minute=5, requests_per_hour=100),
            timeout=10.0,
            retry=RetryPolicy(max_attempts=3, backoff=1.0),
            is_active=bool(config.WALMART_API_KEY),
        ),
        BackendConfig(
            id="costco",
            name="Costco",
            slug="costco",
            kind=BackendKind.SCRAPING.value,
            base_url="https://www.costco.com",
            website="https://www.costco.com",
            rate_limit=RateLimit(requests_per_minute=2, requests_per_hour=50),
            timeout=15.0,
            retry=RetryPolicy(max_attempts=2, backoff=2.0),
            is_active=True,
            options=MappingProxyType({"product_path": "/{identifier}.product.html", "search_path": "/CatalogSearch"}),
        ),
        BackendConfig(
            id="sams-club",
            name="Sam's Club",
            slug="sams-club",
            kind=BackendKind.SCRAPING.value,
            base_url="https://www.samsclub.com",
            website="https://www.samsclub.com",
            rate_limit=RateLimit(requests_per_minute=2, requests_per_hour=50),
            timeout=15.0,
            retry=RetryPolicy(max_attempts=2, backoff=2.0),
            is_active=True,
            options=MappingProxyType({"product_path": "/ip/{identifier}", "search_path": "/s/search"}),
        ),
    ]
