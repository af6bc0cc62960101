"""
Affiliate product API adapter.

Affiliate catalogues identify items by UPC or item id and report stock as
free text ("Available", "Limited Supply", "Not available").
"""

from typing import Any, Dict, List, Optional

from stockwatch.backends.base import BaseBackend, IN_STOCK_STATUSES, normalize_status, parse_price
from stockwatch.backends.config import BackendKind
from stockwatch.core.exceptions import BackendErrorKind
from stockwatch.schemas import AvailabilityRequest, AvailabilityResult


class AffiliateApiBackend(BaseBackend):
    kind = BackendKind.AFFILIATE

    def _auth(self, params: Dict[str, Any], headers: Dict[str, str]) -> None:
        if self.config.api_key:
            params["apiKey"] = self.config.api_key
        params.setdefault("format", "json")

    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityResult:
        if request.upc:
            params = {"upc": request.upc}
        else:
            params = {"ids": request.identifier}

        data = await self._get_json("/items", params=params)
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            raise self._error(f"No affiliate item for {request.identifier}", BackendErrorKind.NOT_FOUND, 404)
        return self._parse_item(items[0], request.product_id)

    async def search_products(self, query: str) -> List[AvailabilityResult]:
        data = await self._get_json("/search", params={"query": query, "numItems": 25})
        items = data.get("items") if isinstance(data, dict) else None
        if items is None:
            raise self._error("Search payload missing 'items'", BackendErrorKind.PARSING)
        return [self._parse_item(item, None) for item in items if isinstance(item, dict)]

    def _parse_item(self, item: Dict[str, Any], product_id: Optional[int]) -> AvailabilityResult:
        status = normalize_status(item.get("stock"))
        return AvailabilityResult(
            product_id=product_id,
            backend_id=self.backend_id,
            in_stock=status in IN_STOCK_STATUSES,
            price=parse_price(item.get("salePrice")),
            original_price=parse_price(item.get("msrp")),
            availability_status=status,
            product_url=item.get("productUrl") or item.get("productTrackingUrl"),
            cart_url=item.get("addToCartUrl"),
            title=item.get("name"),
            metadata={"item_id": item.get("itemId"), "upc": item.get("upc")},
        )
