from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from stockwatch.core.typing import utc_now


# === Backend adapter interface ===

class AvailabilityRequest(BaseModel):
    product_id: int
    sku: Optional[str] = None
    upc: Optional[str] = None
    zip_code: Optional[str] = None
    radius_miles: Optional[int] = None

    @property
    def identifier(self) -> str:
        """Best identifier to look the product up by at a backend."""
        return self.sku or self.upc or str(self.product_id)


class StoreLocation(BaseModel):
    store_id: str
    store_name: str
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    phone: Optional[str] = None
    distance_miles: Optional[float] = None
    in_stock: bool = False
    stock_level: Optional[int] = None
    price: Optional[float] = None


class AvailabilityResult(BaseModel):
    product_id: Optional[int] = None  # None for search hits not yet matched to a product
    backend_id: str
    in_stock: bool
    price: Optional[float] = None
    original_price: Optional[float] = None
    availability_status: str = "unknown"  # in_stock, low_stock, out_of_stock, pre_order, discontinued, unknown
    product_url: Optional[str] = None
    cart_url: Optional[str] = None
    stock_level: Optional[int] = None
    store_locations: List[StoreLocation] = Field(default_factory=list)
    title: Optional[str] = None
    last_updated: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HealthStatus(BaseModel):
    backend_id: str
    is_healthy: bool
    response_time_ms: float = 0.0
    success_rate: float = 1.0  # 0.0 - 1.0
    last_checked: datetime = Field(default_factory=utc_now)
    errors: List[str] = Field(default_factory=list)
    circuit_breaker_state: str = "closed"  # closed, open, half_open


# === Operator API ===

class BackendOut(BaseModel):
    id: str
    name: str
    slug: str
    kind: str
    is_active: bool
    website: Optional[str] = None
    circuit_breaker_state: str
    health: Optional[HealthStatus] = None


class BackendMetricsOut(BaseModel):
    backend_id: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    short_circuited: int
    average_response_time_ms: float
    rate_limit_hits: int
    circuit_breaker_trips: int
    success_rate: float  # percent
    last_request_time: Optional[str] = None
    circuit_breaker: Dict[str, Any]


class BackendActiveUpdate(BaseModel):
    is_active: bool


class BackendActionOut(BaseModel):
    backend_id: str
    status: str
    message: str


class PollCycleOut(BaseModel):
    cycle_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    products_scanned: int
    product_failures: int
    observations: int
    pair_failures: int
    signals_published: int
    restocks_detected: int
    notifications_sent: int
    notifications_failed: int
