"""
Tests for restock notifiers.
"""

import asyncio
import json

import httpx
import pytest

from stockwatch.models import Watch
from stockwatch.services.notifier import LogNotifier, RestockPayload, WebhookNotifier, format_restock_embed


@pytest.fixture
def watch():
    return Watch(id=7, user_id=42, product_id=1)


@pytest.fixture
def payload():
    return RestockPayload(
        product_id=1,
        product_name="Switch OLED",
        backend_id="alpha",
        price=349.99,
        product_url="https://alpha.test/p/1",
        cart_url="https://alpha.test/cart/add/1",
    )


class TestFormatRestockEmbed:
    def test_embed_fields(self, payload):
        embed = format_restock_embed(payload)

        assert embed["title"] == "Back in stock: Switch OLED"
        assert embed["url"] == "https://alpha.test/p/1"
        names = [f["name"] for f in embed["fields"]]
        assert names == ["Retailer", "Status", "Price", "Add to cart"]
        assert embed["fields"][2]["value"] == "$349.99"

    def test_optional_fields_omitted(self):
        embed = format_restock_embed(RestockPayload(product_id=1, product_name="X", backend_id="beta"))

        assert "url" not in embed
        assert [f["name"] for f in embed["fields"]] == ["Retailer", "Status"]


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_embed(self, watch, payload):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier("https://hooks.test/abc", client=client)

        await notifier.notify(watch, payload)
        await notifier.aclose()

        assert len(requests) == 1
        body = json.loads(requests[0].content)
        assert body["username"] == "Stockwatch"
        assert body["embeds"][0]["title"] == "Back in stock: Switch OLED"

    @pytest.mark.asyncio
    async def test_http_error_raises(self, watch, payload):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        notifier = WebhookNotifier("https://hooks.test/abc", client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await notifier.notify(watch, payload)

    @pytest.mark.asyncio
    async def test_watches_of_one_restock_share_a_single_post(self, payload):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier("https://hooks.test/abc", client=client)
        watches = [Watch(id=i, user_id=100 + i, product_id=1) for i in range(1, 4)]

        await asyncio.gather(*(notifier.notify(w, payload) for w in watches))

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_failed_post_fails_every_watch_then_retries(self, watch, payload):
        responses = [httpx.Response(500), httpx.Response(204)]
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: responses.pop(0)))
        notifier = WebhookNotifier("https://hooks.test/abc", client=client)
        other = Watch(id=8, user_id=43, product_id=1)

        settled = await asyncio.gather(notifier.notify(watch, payload), notifier.notify(other, payload),
                                       return_exceptions=True)
        assert all(isinstance(outcome, httpx.HTTPStatusError) for outcome in settled)

        await notifier.notify(watch, payload)
        assert responses == []

    @pytest.mark.asyncio
    async def test_separate_restocks_post_separately(self, watch, payload):
        requests = []
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: requests.append(r) or httpx.Response(204)))
        notifier = WebhookNotifier("https://hooks.test/abc", client=client)

        await notifier.notify(watch, payload)
        await notifier.notify(watch, RestockPayload(product_id=1, product_name="Switch OLED", backend_id="beta"))

        assert len(requests) == 2


class TestLogNotifier:
    @pytest.mark.asyncio
    async def test_never_raises(self, watch, payload):
        await LogNotifier().notify(watch, payload)
