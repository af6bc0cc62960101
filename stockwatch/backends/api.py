"""
Direct retailer REST API adapter.

Expects a JSON API of the shape:
    GET /products/{sku-or-upc}          -> {"sku": ..., "onlineAvailability": ..., ...}
    GET /products?search=<query>        -> {"products": [{...}, ...]}
"""

from typing import Any, Dict, List, Optional

from stockwatch.backends.base import BaseBackend, IN_STOCK_STATUSES, normalize_status, parse_price
from stockwatch.backends.config import BackendKind
from stockwatch.core.exceptions import BackendErrorKind
from stockwatch.schemas import AvailabilityRequest, AvailabilityResult, StoreLocation


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


class DirectApiBackend(BaseBackend):
    kind = BackendKind.API

    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityResult:
        params: Dict[str, Any] = {}
        if request.zip_code:
            params["postalCode"] = request.zip_code
        if request.radius_miles:
            params["radius"] = request.radius_miles

        data = await self._get_json(f"/products/{request.identifier}", params=params)
        if not isinstance(data, dict):
            raise self._error("Unexpected product payload", BackendErrorKind.PARSING)
        return self._parse_product(data, request.product_id)

    async def search_products(self, query: str) -> List[AvailabilityResult]:
        data = await self._get_json("/products", params={"search": query, "pageSize": 25})
        items = data.get("products") if isinstance(data, dict) else None
        if items is None:
            raise self._error("Search payload missing 'products'", BackendErrorKind.PARSING)
        return [self._parse_product(item, None) for item in items if isinstance(item, dict)]

    def _parse_product(self, data: Dict[str, Any], product_id: Optional[int]) -> AvailabilityResult:
        online = _first(data, "onlineAvailability", "in_stock", "inStock")
        status = normalize_status(
            _first(data, "availabilityStatus", "availability_status", "status"),
            bool(online) if online is not None else None,
        )
        in_stock = bool(online) if online is not None else status in IN_STOCK_STATUSES

        stores = [
            StoreLocation(
                store_id=str(_first(store, "storeId", "store_id") or ""),
                store_name=str(_first(store, "name", "storeName") or ""),
                address=str(store.get("address") or ""),
                city=str(store.get("city") or ""),
                state=str(store.get("state") or ""),
                zip_code=str(_first(store, "postalCode", "zipCode") or ""),
                phone=store.get("phone"),
                distance_miles=parse_price(store.get("distance")),
                in_stock=bool(_first(store, "inStock", "in_stock")),
            )
            for store in data.get("stores") or []
            if isinstance(store, dict)
        ]

        return AvailabilityResult(
            product_id=product_id,
            backend_id=self.backend_id,
            in_stock=in_stock,
            price=parse_price(_first(data, "salePrice", "price")),
            original_price=parse_price(_first(data, "regularPrice", "originalPrice")),
            availability_status=status,
            product_url=_first(data, "url", "productUrl"),
            cart_url=_first(data, "addToCartUrl", "cartUrl"),
            stock_level=_first(data, "quantityLimit", "stockLevel"),
            store_locations=stores,
            title=_first(data, "name", "title"),
            metadata={"sku": data.get("sku"), "upc": data.get("upc")},
        )
