from typing import Optional, List, Dict, Any
from sqlmodel import Field, SQLModel
from sqlalchemy import Index, Column, UniqueConstraint
from sqlalchemy.types import JSON
from datetime import datetime

from stockwatch.core.typing import utc_now


class ProductAvailability(SQLModel, table=True):
    """Latest known availability for one (product, backend) pair.

    Exactly one row per pair: observations are upserted in place.
    """

    __tablename__ = "product_availability"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    backend_id: str = Field(index=True)  # BackendConfig.id, e.g. 'best-buy'

    in_stock: bool = Field(default=False)
    price: Optional[float] = None
    original_price: Optional[float] = None
    availability_status: str = Field(default="unknown")  # in_stock, low_stock, out_of_stock, pre_order, discontinued, unknown
    product_url: Optional[str] = None
    cart_url: Optional[str] = None
    stock_level: Optional[int] = None

    # Format: [{"store_id": "123", "store_name": "...", "in_stock": true, ...}, ...]
    store_locations: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))

    last_checked: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    __table_args__ = (UniqueConstraint("product_id", "backend_id", name="uq_availability_product_backend"),)


class PriceHistory(SQLModel, table=True):
    """Append-only price observations (never updated)."""

    __tablename__ = "price_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id")
    backend_id: str
    price: float
    original_price: Optional[float] = None
    in_stock: bool = Field(default=False)
    availability_status: str = Field(default="unknown")
    recorded_at: datetime = Field(default_factory=utc_now)

    __table_args__ = (Index("ix_pricehistory_product_backend_recorded", "product_id", "backend_id", "recorded_at"),)
