"""
Drop signal models.

A drop signal is a normalized fact derived from an availability observation
(status flipped, price appeared, product URL seen, item went in stock). Signals
are de-duplicated inside a short window and immutable once written.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union, Dict, Any
from sqlmodel import Field, SQLModel
from sqlalchemy import Index
from datetime import datetime

from stockwatch.core.typing import utc_now


class SignalType(str, Enum):
    STATUS_CHANGE = "status_change"
    PRICE_PRESENT = "price_present"
    URL_SEEN = "url_seen"
    IN_STOCK = "in_stock"


SignalValue = Union[str, int, float, bool, Dict[str, Any], None]


@dataclass
class DropSignal:
    """A signal about to be published."""

    product_id: int
    backend_id: str
    signal_type: SignalType
    signal_value: SignalValue = None
    source: str = "availability-poller"
    confidence: Optional[int] = None  # 0-100
    observed_at: Optional[datetime] = None


class DropEvent(SQLModel, table=True):
    """Persisted drop signal."""

    __tablename__ = "drop_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    backend_id: str = Field(index=True)
    signal_type: str
    signal_value: Optional[str] = None  # Strings as-is, everything else JSON-encoded
    source: str = Field(default="availability-poller")
    confidence: Optional[int] = None
    observed_at: datetime = Field(default_factory=utc_now)
    dedup_key: str = Field(index=True)
    created_at: datetime = Field(default_factory=utc_now)

    __table_args__ = (Index("ix_dropevent_dedup_created", "dedup_key", "created_at"),)


def encode_signal_value(value: SignalValue) -> Optional[str]:
    """Strings pass through; everything else becomes sorted-key JSON."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)
