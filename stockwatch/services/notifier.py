"""
Restock notifiers.

The poller hands every matching watch to a Notifier when a product goes back
in stock. ``notify`` raises on delivery failure; the caller isolates it.

WebhookNotifier posts one Discord-style embed per restock to a single channel;
every watch of that restock shares the post and its outcome:
    {"username": "Stockwatch", "embeds": [{"title": "Back in stock: ...", "fields": [...]}]}
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import httpx
from cachetools import TTLCache

from stockwatch.core.logging_config import get_logger
from stockwatch.core.typing import utc_now
from stockwatch.models import Watch

logger = get_logger(__name__)

RESTOCK_COLOR = 0x2ECC71


@dataclass
class RestockPayload:
    product_id: int
    product_name: str
    backend_id: str
    price: Optional[float] = None
    product_url: Optional[str] = None
    cart_url: Optional[str] = None
    availability_status: str = "in_stock"
    detected_at: datetime = field(default_factory=utc_now)


@dataclass
class NotificationOutcome:
    watch_id: Optional[int]
    user_id: int
    success: bool
    error: Optional[str] = None


class Notifier(Protocol):
    async def notify(self, watch: Watch, payload: RestockPayload) -> None: ...


class LogNotifier:
    """Fallback when no webhook is configured: restocks only go to the log."""

    async def notify(self, watch: Watch, payload: RestockPayload) -> None:
        logger.info(
            "Restock notification",
            watch_id=watch.id,
            user_id=watch.user_id,
            product_id=payload.product_id,
            backend_id=payload.backend_id,
            price=payload.price,
            product_url=payload.product_url,
        )


def format_restock_embed(payload: RestockPayload) -> dict:
    fields = [
        {"name": "Retailer", "value": payload.backend_id, "inline": True},
        {"name": "Status", "value": payload.availability_status, "inline": True},
    ]
    if payload.price is not None:
        fields.append({"name": "Price", "value": f"${payload.price:,.2f}", "inline": True})
    if payload.cart_url:
        fields.append({"name": "Add to cart", "value": payload.cart_url, "inline": False})

    embed = {
        "title": f"Back in stock: {payload.product_name}",
        "color": RESTOCK_COLOR,
        "fields": fields,
        "footer": {"text": f"Product #{payload.product_id}"},
        "timestamp": payload.detected_at.isoformat(),
    }
    if payload.product_url:
        embed["url"] = payload.product_url
    return embed


class WebhookNotifier:
    """Channel webhook. Watches of the same restock collapse into one post."""

    def __init__(
        self,
        url: str,
        username: str = "Stockwatch",
        timeout: float = 10.0,
        post_ttl_seconds: int = 600,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.username = username
        self._client = client or httpx.AsyncClient(timeout=timeout)
        # restock key -> in-flight or finished post
        self._posts: TTLCache = TTLCache(maxsize=1024, ttl=post_ttl_seconds)

    async def notify(self, watch: Watch, payload: RestockPayload) -> None:
        key = (payload.product_id, payload.backend_id, payload.detected_at)
        post = self._posts.get(key)
        if post is None:
            post = asyncio.ensure_future(self._post(payload))
            self._posts[key] = post

        try:
            await asyncio.shield(post)
        except Exception:
            # Let a later retry of this restock post again
            if self._posts.get(key) is post:
                self._posts.pop(key, None)
            raise

    async def _post(self, payload: RestockPayload) -> None:
        body = {"username": self.username, "embeds": [format_restock_embed(payload)]}
        response = await self._client.post(self.url, json=body)
        response.raise_for_status()
        logger.info("Restock webhook posted", product_id=payload.product_id, backend_id=payload.backend_id)

    async def aclose(self) -> None:
        await self._client.aclose()
