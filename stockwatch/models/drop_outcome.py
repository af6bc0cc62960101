from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from stockwatch.core.typing import utc_now


class DropOutcome(SQLModel, table=True):
    """When a drop was first seen and first in stock, per (product, backend).

    buy_window_sec is the lead time between the two, when both are known.
    """

    __tablename__ = "drop_outcomes"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    backend_id: str = Field(index=True)
    drop_at: datetime = Field(default_factory=utc_now, index=True)
    first_seen_at: Optional[datetime] = None
    first_instock_at: Optional[datetime] = None
    buy_window_sec: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
