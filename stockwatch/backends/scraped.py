"""
Scraped HTML adapter.

Reads availability from the schema.org Product data retailers embed in their
pages (JSON-LD first, microdata as fallback). Paths come from the backend's
options:
    product_path: "/ip/{identifier}"
    search_path:  "/s/search"   (queried with ?q=<query>)
"""

import json
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from stockwatch.backends.base import BaseBackend, IN_STOCK_STATUSES, normalize_status, parse_price
from stockwatch.backends.config import BackendKind
from stockwatch.core.exceptions import BackendError, BackendErrorKind
from stockwatch.core.logging_config import get_logger
from stockwatch.schemas import AvailabilityRequest, AvailabilityResult

logger = get_logger(__name__)


def _iter_json_ld(soup: BeautifulSoup) -> Iterator[Dict[str, Any]]:
    """Yield every JSON-LD object on the page, flattening @graph and lists."""
    for script in soup.select('script[type="application/ld+json"]'):
        try:
            payload = json.loads(script.string or "")
        except ValueError:
            continue
        stack = payload if isinstance(payload, list) else [payload]
        while stack:
            node = stack.pop(0)
            if not isinstance(node, dict):
                continue
            if "@graph" in node:
                stack.extend(node["@graph"])
                continue
            yield node
            if _has_type(node, "ItemList"):
                for element in node.get("itemListElement") or []:
                    if isinstance(element, dict):
                        stack.append(element.get("item", element))


def _has_type(node: Dict[str, Any], name: str) -> bool:
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return name in node_type
    return node_type == name


def _offer(product: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the offer to read. Raises ValueError on malformed offers."""
    offers = product.get("offers") or {}
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    if not isinstance(offers, dict):
        raise ValueError(f"unexpected offers value: {offers!r:.80}")
    if offers.get("@type") == "AggregateOffer" and "offers" in offers:
        nested = offers["offers"]
        offers = nested[0] if isinstance(nested, list) and nested else offers
    return offers if isinstance(offers, dict) else {}


class ScrapedPageBackend(BaseBackend):
    kind = BackendKind.SCRAPING

    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityResult:
        path = self.config.options.get("product_path", "/product/{identifier}").format(identifier=request.identifier)
        response = await self._request("GET", path)
        soup = BeautifulSoup(response.text, "lxml")

        for node in _iter_json_ld(soup):
            if _has_type(node, "Product"):
                return self._from_product(node, request.product_id, str(response.url))

        result = self._from_microdata(soup, request.product_id, str(response.url))
        if result is None:
            raise self._error(f"No product data on {path}", BackendErrorKind.PARSING)
        return result

    async def search_products(self, query: str) -> List[AvailabilityResult]:
        path = self.config.options.get("search_path", "/search")
        response = await self._request("GET", path, params={"q": query})
        soup = BeautifulSoup(response.text, "lxml")
        results = []
        for node in _iter_json_ld(soup):
            if not _has_type(node, "Product"):
                continue
            try:
                results.append(self._from_product(node, None, str(response.url)))
            except BackendError as e:
                logger.debug("Skipping unreadable search result", backend_id=self.backend_id, error=str(e))
        return results

    def _from_product(self, product: Dict[str, Any], product_id: Optional[int], page_url: str) -> AvailabilityResult:
        try:
            offer = _offer(product)
        except ValueError as e:
            raise self._error(f"Unreadable product offer: {e}", BackendErrorKind.PARSING) from e
        status = normalize_status(offer.get("availability"))
        url = offer.get("url") or product.get("url") or page_url
        return AvailabilityResult(
            product_id=product_id,
            backend_id=self.backend_id,
            in_stock=status in IN_STOCK_STATUSES,
            price=parse_price(offer.get("price") or offer.get("lowPrice")),
            original_price=parse_price(offer.get("highPrice")),
            availability_status=status,
            product_url=urljoin(self.config.base_url + "/", url),
            title=product.get("name"),
            metadata={"sku": product.get("sku"), "gtin": product.get("gtin12") or product.get("gtin13")},
        )

    def _from_microdata(self, soup: BeautifulSoup, product_id: Optional[int], page_url: str) -> Optional[AvailabilityResult]:
        availability = soup.select_one('[itemprop="availability"]')
        if availability is None:
            return None

        raw_status = availability.get("href") or availability.get("content") or availability.get_text(strip=True)
        status = normalize_status(raw_status)
        price_elem = soup.select_one('[itemprop="price"]')
        price = None
        if price_elem is not None:
            price = parse_price(price_elem.get("content") or price_elem.get_text(strip=True))
        name_elem = soup.select_one('[itemprop="name"]')

        return AvailabilityResult(
            product_id=product_id,
            backend_id=self.backend_id,
            in_stock=status in IN_STOCK_STATUSES,
            price=price,
            availability_status=status,
            product_url=page_url,
            title=name_elem.get_text(strip=True) if name_elem else None,
        )
