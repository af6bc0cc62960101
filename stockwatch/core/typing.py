"""
Type helpers for SQLAlchemy/SQLModel compatibility with type checkers.

SQLModel fields are declared with Python types (e.g., `in_stock: bool`) but at
the class level they're actually InstrumentedAttribute descriptors with
SQLAlchemy column methods like .desc(), .in_(), .is_(), etc.

Type checkers report errors when column methods are called on them. This
module provides helpers to bridge that gap.
"""

from typing import TYPE_CHECKING, Optional, TypeVar
from datetime import datetime, timezone

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        from stockwatch.core.typing import col

        select(Product).order_by(col(Product.popularity_score).desc())
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """
    Get current UTC time (timezone-aware).

    Use as default_factory in SQLModel fields.

    Usage:
        created_at: datetime = Field(default_factory=utc_now)
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes read back from SQLite.

    PostgreSQL returns aware values already; SQLite drops the offset.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


__all__ = ["col", "utc_now", "as_utc"]
