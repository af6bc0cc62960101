from typing import Optional
from sqlmodel import Field, SQLModel
from sqlalchemy import Index
from datetime import datetime

from stockwatch.core.typing import utc_now


class Product(SQLModel, table=True):
    """A tracked product. Owned by the wider application, read by the poller."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    sku: Optional[str] = Field(default=None, index=True)
    upc: Optional[str] = Field(default=None, index=True)
    is_active: bool = Field(default=True, index=True)
    popularity_score: int = Field(default=0)  # Higher = polled first
    created_at: datetime = Field(default_factory=utc_now)

    # Poll batch selection: active products by popularity then recency
    __table_args__ = (Index("ix_product_active_popularity", "is_active", "popularity_score", "created_at"),)
