"""
Tests for backend adapters.

HTTP is served by httpx.MockTransport, so no network access is needed.
"""

import json
from types import MappingProxyType

import httpx
import pytest

from stockwatch.backends.affiliate import AffiliateApiBackend
from stockwatch.backends.api import DirectApiBackend
from stockwatch.backends.base import normalize_status, parse_price
from stockwatch.backends.config import RateLimit, RetryPolicy
from stockwatch.backends.scraped import ScrapedPageBackend
from stockwatch.core.exceptions import BackendError, BackendErrorKind
from stockwatch.schemas import AvailabilityRequest


def build_adapter(adapter_class, config, handler):
    """Adapter wired to a MockTransport; pacing disabled for tests."""
    client = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
    adapter = adapter_class(config, client=client)
    adapter.min_request_interval = 0
    return adapter


class RecordingHandler:
    """Serve queued responses in order, remembering every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class TestStatusNormalization:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("https://schema.org/InStock", "in_stock"),
            ("http://schema.org/OutOfStock", "out_of_stock"),
            ("LimitedAvailability", "low_stock"),
            ("Available", "in_stock"),
            ("Not available", "out_of_stock"),
            ("PreOrder", "pre_order"),
            ("low_stock", "low_stock"),
            ("something odd", "unknown"),
            (None, "unknown"),
        ],
    )
    def test_normalize_status(self, raw, expected):
        assert normalize_status(raw) == expected

    def test_falls_back_to_in_stock_flag(self):
        assert normalize_status(None, in_stock=True) == "in_stock"
        assert normalize_status("", in_stock=False) == "out_of_stock"

    @pytest.mark.parametrize(
        "raw,expected",
        [(19.99, 19.99), ("19.99", 19.99), ("$1,299.00", 1299.0), (None, None), ("call", None), (True, None)],
    )
    def test_parse_price(self, raw, expected):
        assert parse_price(raw) == expected


class TestDirectApiBackend:
    @pytest.fixture
    def config(self, make_backend_config):
        return make_backend_config(
            "best-buy",
            api_key="secret",
            options=MappingProxyType({"auth_param": "apiKey"}),
        )

    @pytest.mark.asyncio
    async def test_check_availability_parses_product(self, config):
        handler = RecordingHandler(httpx.Response(200, json={
            "sku": "6470923",
            "name": "Switch OLED",
            "onlineAvailability": True,
            "salePrice": 349.99,
            "regularPrice": 359.99,
            "url": "https://www.best-buy.test/p/6470923",
            "addToCartUrl": "https://www.best-buy.test/cart/6470923",
            "stores": [{"storeId": 12, "name": "Downtown", "city": "Austin", "inStock": True}],
        }))
        adapter = build_adapter(DirectApiBackend, config, handler)

        result = await adapter.check_availability(AvailabilityRequest(product_id=1, sku="6470923", zip_code="78701"))

        assert result.backend_id == "best-buy"
        assert result.product_id == 1
        assert result.in_stock is True
        assert result.availability_status == "in_stock"
        assert result.price == 349.99
        assert result.original_price == 359.99
        assert result.cart_url.endswith("/cart/6470923")
        assert result.store_locations[0].store_id == "12"

        request = handler.requests[0]
        assert request.url.path == "/products/6470923"
        assert request.url.params["apiKey"] == "secret"
        assert request.url.params["postalCode"] == "78701"

    @pytest.mark.asyncio
    async def test_out_of_stock_flag(self, config):
        handler = RecordingHandler(httpx.Response(200, json={"sku": "1", "onlineAvailability": False}))
        adapter = build_adapter(DirectApiBackend, config, handler)

        result = await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))
        assert result.in_stock is False
        assert result.availability_status == "out_of_stock"

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, config):
        handler = RecordingHandler(httpx.Response(404))
        adapter = build_adapter(DirectApiBackend, config, handler)

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=1, sku="missing"))

        assert exc_info.value.kind == BackendErrorKind.NOT_FOUND
        assert exc_info.value.status_code == 404
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_server_errors_retried_then_succeed(self, config):
        handler = RecordingHandler(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, json={"sku": "1", "onlineAvailability": True}),
        )
        adapter = build_adapter(DirectApiBackend, config, handler)

        result = await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))
        assert result.in_stock is True
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_server_error_after_retries_exhausted(self, config):
        handler = RecordingHandler(httpx.Response(500))
        adapter = build_adapter(DirectApiBackend, config, handler)

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))

        assert exc_info.value.kind == BackendErrorKind.SERVER_ERROR
        assert exc_info.value.retryable is True
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_remote_rate_limit(self, make_backend_config):
        config = make_backend_config("best-buy", retry=RetryPolicy(max_attempts=1, backoff=0.0))
        adapter = build_adapter(DirectApiBackend, config, RecordingHandler(httpx.Response(429)))

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))
        assert exc_info.value.kind == BackendErrorKind.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_local_rate_limit_refuses_without_request(self, make_backend_config):
        config = make_backend_config("best-buy", rate_limit=RateLimit(requests_per_minute=1, requests_per_hour=10))
        handler = RecordingHandler(httpx.Response(200, json={"sku": "1", "onlineAvailability": True}))
        adapter = build_adapter(DirectApiBackend, config, handler)

        await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))
        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))

        assert exc_info.value.kind == BackendErrorKind.RATE_LIMIT
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_timeout_classified(self, make_backend_config):
        config = make_backend_config("best-buy", retry=RetryPolicy(max_attempts=2, backoff=0.0))
        handler = RecordingHandler(httpx.ReadTimeout("slow"))
        adapter = build_adapter(DirectApiBackend, config, handler)

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))

        assert exc_info.value.kind == BackendErrorKind.TIMEOUT
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_invalid_json_is_parsing_error(self, config):
        handler = RecordingHandler(httpx.Response(200, text="<html>maintenance</html>"))
        adapter = build_adapter(DirectApiBackend, config, handler)

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=1, sku="1"))
        assert exc_info.value.kind == BackendErrorKind.PARSING

    @pytest.mark.asyncio
    async def test_search_products(self, config):
        handler = RecordingHandler(httpx.Response(200, json={"products": [
            {"sku": "1", "name": "Switch OLED", "onlineAvailability": True, "salePrice": 349.99},
            {"sku": "2", "name": "Switch Lite", "onlineAvailability": False},
        ]}))
        adapter = build_adapter(DirectApiBackend, config, handler)

        results = await adapter.search_products("switch")

        assert [r.title for r in results] == ["Switch OLED", "Switch Lite"]
        assert all(r.product_id is None for r in results)
        assert handler.requests[0].url.params["search"] == "switch"

    @pytest.mark.asyncio
    async def test_health_status(self, config):
        adapter = build_adapter(DirectApiBackend, config, RecordingHandler(httpx.Response(200, json={})))

        status = await adapter.get_health_status()
        assert status.is_healthy is True
        assert status.backend_id == "best-buy"

    @pytest.mark.asyncio
    async def test_health_probe_failure_raises(self, config):
        adapter = build_adapter(DirectApiBackend, config, RecordingHandler(httpx.Response(401)))

        with pytest.raises(BackendError) as exc_info:
            await adapter.get_health_status()
        assert exc_info.value.kind == BackendErrorKind.AUTH


class TestAffiliateApiBackend:
    @pytest.fixture
    def config(self, make_backend_config):
        return make_backend_config("walmart", kind="affiliate", api_key="wm-key")

    @pytest.mark.asyncio
    async def test_lookup_by_upc(self, config):
        handler = RecordingHandler(httpx.Response(200, json={"items": [{
            "itemId": 55,
            "name": "PS5 Slim",
            "stock": "Limited Supply",
            "salePrice": 449.0,
            "msrp": 499.0,
            "productUrl": "https://www.walmart.test/ip/55",
        }]}))
        adapter = build_adapter(AffiliateApiBackend, config, handler)

        result = await adapter.check_availability(AvailabilityRequest(product_id=2, upc="711719575788"))

        assert result.in_stock is True
        assert result.availability_status == "low_stock"
        assert result.original_price == 499.0
        params = handler.requests[0].url.params
        assert params["upc"] == "711719575788"
        assert params["apiKey"] == "wm-key"
        assert params["format"] == "json"

    @pytest.mark.asyncio
    async def test_no_items_is_not_found(self, config):
        adapter = build_adapter(AffiliateApiBackend, config, RecordingHandler(httpx.Response(200, json={"items": []})))

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=2, sku="55"))
        assert exc_info.value.kind == BackendErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_not_available_text(self, config):
        handler = RecordingHandler(httpx.Response(200, json={"items": [{"itemId": 1, "stock": "Not available"}]}))
        adapter = build_adapter(AffiliateApiBackend, config, handler)

        result = await adapter.check_availability(AvailabilityRequest(product_id=2, sku="1"))
        assert result.in_stock is False
        assert result.availability_status == "out_of_stock"


PRODUCT_PAGE = """
<html><head>
<script type="application/ld+json">{"@context": "https://schema.org", "@type": "BreadcrumbList"}</script>
<script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [{
  "@type": "Product", "name": "Steam Deck OLED", "sku": "SD-512",
  "offers": {"@type": "Offer", "price": "549.00", "availability": "https://schema.org/InStock", "url": "/ip/SD-512"}
}]}
</script>
</head><body></body></html>
"""

MICRODATA_PAGE = """
<html><body>
<div itemscope itemtype="https://schema.org/Product">
  <h1 itemprop="name">Steam Deck OLED</h1>
  <span itemprop="price" content="549.00">$549.00</span>
  <link itemprop="availability" href="https://schema.org/OutOfStock" />
</div>
</body></html>
"""

SEARCH_PAGE = """
<html><head><script type="application/ld+json">
{"@type": "ItemList", "itemListElement": [
  {"@type": "ListItem", "item": {"@type": "Product", "name": "Deck A", "offers": [{"price": 399, "availability": "InStock"}]}},
  {"@type": "ListItem", "item": {"@type": "Product", "name": "Deck B", "offers": {"price": 549, "availability": "SoldOut"}}}
]}
</script></head></html>
"""


class TestScrapedPageBackend:
    @pytest.fixture
    def config(self, make_backend_config):
        return make_backend_config(
            "sams-club",
            kind="scraping",
            options=MappingProxyType({"product_path": "/ip/{identifier}", "search_path": "/s/search"}),
        )

    @pytest.mark.asyncio
    async def test_json_ld_product(self, config):
        handler = RecordingHandler(httpx.Response(200, text=PRODUCT_PAGE))
        adapter = build_adapter(ScrapedPageBackend, config, handler)

        result = await adapter.check_availability(AvailabilityRequest(product_id=3, sku="SD-512"))

        assert handler.requests[0].url.path == "/ip/SD-512"
        assert result.in_stock is True
        assert result.price == 549.0
        assert result.title == "Steam Deck OLED"
        assert result.product_url == "https://sams-club.test/ip/SD-512"

    @pytest.mark.asyncio
    async def test_microdata_fallback(self, config):
        adapter = build_adapter(ScrapedPageBackend, config, RecordingHandler(httpx.Response(200, text=MICRODATA_PAGE)))

        result = await adapter.check_availability(AvailabilityRequest(product_id=3, sku="SD-512"))

        assert result.in_stock is False
        assert result.availability_status == "out_of_stock"
        assert result.price == 549.0

    @pytest.mark.asyncio
    async def test_page_without_product_data(self, config):
        adapter = build_adapter(ScrapedPageBackend, config, RecordingHandler(httpx.Response(200, text="<html></html>")))

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=3, sku="SD-512"))
        assert exc_info.value.kind == BackendErrorKind.PARSING

    @pytest.mark.asyncio
    async def test_forbidden_reported_as_bot_detection(self, config):
        adapter = build_adapter(ScrapedPageBackend, config, RecordingHandler(httpx.Response(403)))

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=3, sku="SD-512"))

        assert exc_info.value.kind == BackendErrorKind.AUTH
        assert "bot detection" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_search_reads_item_list(self, config):
        handler = RecordingHandler(httpx.Response(200, text=SEARCH_PAGE))
        adapter = build_adapter(ScrapedPageBackend, config, handler)

        results = await adapter.search_products("deck")

        assert [(r.title, r.in_stock) for r in results] == [("Deck A", True), ("Deck B", False)]
        assert handler.requests[0].url.params["q"] == "deck"

    @pytest.mark.asyncio
    async def test_type_given_as_list(self, config):
        page = """<script type="application/ld+json">
        {"@type": ["Product", "IndividualProduct"], "name": "Deck", "offers": {"price": "399", "availability": "InStock"}}
        </script>"""
        adapter = build_adapter(ScrapedPageBackend, config, RecordingHandler(httpx.Response(200, text=page)))

        result = await adapter.check_availability(AvailabilityRequest(product_id=3, sku="SD-512"))

        assert result.in_stock is True
        assert result.price == 399.0

    @pytest.mark.parametrize("offers", ['"InStock"', '["InStock"]', "[42]"])
    @pytest.mark.asyncio
    async def test_malformed_offers_is_parsing_error(self, config, offers):
        page = f'<script type="application/ld+json">{{"@type": "Product", "name": "Deck", "offers": {offers}}}</script>'
        adapter = build_adapter(ScrapedPageBackend, config, RecordingHandler(httpx.Response(200, text=page)))

        with pytest.raises(BackendError) as exc_info:
            await adapter.check_availability(AvailabilityRequest(product_id=3, sku="SD-512"))
        assert exc_info.value.kind == BackendErrorKind.PARSING

    @pytest.mark.asyncio
    async def test_search_skips_unreadable_results(self, config):
        page = """<script type="application/ld+json">
        {"@type": "ItemList", "itemListElement": [
          {"item": {"@type": "Product", "name": "Broken", "offers": "InStock"}},
          {"item": {"@type": "Product", "name": "Deck B", "offers": {"price": 549, "availability": "InStock"}}}
        ]}
        </script>"""
        adapter = build_adapter(ScrapedPageBackend, config, RecordingHandler(httpx.Response(200, text=page)))

        results = await adapter.search_products("deck")

        assert [r.title for r in results] == ["Deck B"]

    def test_scraping_headers_and_interval(self, config):
        adapter = ScrapedPageBackend(config)

        assert adapter._calculate_min_request_interval() >= 2.0
        assert "Mozilla" in adapter._default_headers()["User-Agent"]
