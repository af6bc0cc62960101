"""
Watch Model

A user's subscription to restock notifications for one product, optionally
limited to specific backends.
"""

from typing import Optional, List
from sqlmodel import Field, SQLModel
from sqlalchemy import Column
from sqlalchemy.types import JSON
from datetime import datetime

from stockwatch.core.typing import utc_now


class Watch(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    product_id: int = Field(foreign_key="product.id", index=True)

    # Empty or None = notify for every backend
    backend_ids: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now)

    def matches_backend(self, backend_id: str) -> bool:
        if not self.backend_ids:
            return True
        return backend_id in self.backend_ids
