"""
Availability Store

Durable side of the poller: poll batch selection, the latest snapshot per
(product, backend), append-only price history, drop signals and drop outcomes.

All methods are synchronous and open a short-lived Session per call.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from stockwatch.core.typing import as_utc, col, utc_now
from stockwatch.models import DropEvent, DropOutcome, DropSignal, PriceHistory, Product, ProductAvailability
from stockwatch.models import encode_signal_value
from stockwatch.schemas import AvailabilityResult

logger = logging.getLogger(__name__)

# How far back an in-stock transition looks for the drop it belongs to
FIRST_IN_STOCK_WINDOW = timedelta(hours=72)
FIRST_SEEN_WINDOW = timedelta(hours=48)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass(frozen=True)
class PollTarget:
    """A product selected for one poll cycle."""

    product_id: int
    name: str
    sku: Optional[str] = None
    upc: Optional[str] = None


def _snapshot_values(product_id: int, result: AvailabilityResult, now: datetime) -> Dict[str, Any]:
    return {
        "product_id": product_id,
        "backend_id": result.backend_id,
        "in_stock": result.in_stock,
        "price": result.price,
        "original_price": result.original_price,
        "availability_status": result.availability_status,
        "product_url": result.product_url,
        "cart_url": result.cart_url,
        "stock_level": result.stock_level,
        "store_locations": [store.model_dump() for store in result.store_locations] or None,
        "last_checked": now,
        "updated_at": now,
    }


class AvailabilityStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def select_poll_batch(self, limit: int) -> List[PollTarget]:
        """Active products, most popular first, newest first among equals."""
        with Session(self.engine) as session:
            products = session.exec(
                select(Product)
                .where(col(Product.is_active).is_(True))
                .order_by(col(Product.popularity_score).desc(), col(Product.created_at).desc())
                .limit(limit)
            ).all()
            return [PollTarget(product_id=p.id, name=p.name, sku=p.sku, upc=p.upc) for p in products]

    def get_snapshot(self, product_id: int, backend_id: str) -> Optional[ProductAvailability]:
        with Session(self.engine) as session:
            return session.exec(
                select(ProductAvailability).where(
                    ProductAvailability.product_id == product_id,
                    ProductAvailability.backend_id == backend_id,
                )
            ).first()

    def upsert_snapshot(self, product_id: int, result: AvailabilityResult) -> None:
        """Insert or replace the snapshot for (product, backend) in one statement."""
        now = utc_now()
        values = _snapshot_values(product_id, result, now)
        table = ProductAvailability.__table__

        with Session(self.engine) as session:
            insert = _UPSERT_DIALECTS.get(self.engine.dialect.name)
            if insert is not None:
                update_columns = {key: value for key, value in values.items() if key not in ("product_id", "backend_id")}
                stmt = insert(table).values(created_at=now, **values)
                stmt = stmt.on_conflict_do_update(index_elements=["product_id", "backend_id"], set_=update_columns)
                session.execute(stmt)
            else:
                # No native upsert: read then write inside one transaction
                snapshot = session.exec(
                    select(ProductAvailability).where(
                        ProductAvailability.product_id == product_id,
                        ProductAvailability.backend_id == result.backend_id,
                    )
                ).first()
                if snapshot is None:
                    snapshot = ProductAvailability(created_at=now, **values)
                else:
                    for key, value in values.items():
                        setattr(snapshot, key, value)
                session.add(snapshot)
            session.commit()

    def append_price_history(self, product_id: int, result: AvailabilityResult) -> None:
        if result.price is None:
            return
        with Session(self.engine) as session:
            session.add(
                PriceHistory(
                    product_id=product_id,
                    backend_id=result.backend_id,
                    price=result.price,
                    original_price=result.original_price,
                    in_stock=result.in_stock,
                    availability_status=result.availability_status,
                )
            )
            session.commit()

    def insert_signal(self, signal: DropSignal, dedup_key: str) -> DropEvent:
        event = DropEvent(
            product_id=signal.product_id,
            backend_id=signal.backend_id,
            signal_type=signal.signal_type.value,
            signal_value=encode_signal_value(signal.signal_value),
            source=signal.source,
            confidence=signal.confidence,
            observed_at=signal.observed_at or utc_now(),
            dedup_key=dedup_key,
        )
        with Session(self.engine) as session:
            session.add(event)
            session.commit()
            session.refresh(event)
            return event

    def has_recent_signal(self, dedup_key: str, since: datetime) -> bool:
        with Session(self.engine) as session:
            event_id = session.exec(
                select(DropEvent.id)
                .where(DropEvent.dedup_key == dedup_key, col(DropEvent.created_at) >= since)
                .limit(1)
            ).first()
            return event_id is not None

    def _latest_outcome(self, session: Session, product_id: int, backend_id: str, since: datetime) -> Optional[DropOutcome]:
        return session.exec(
            select(DropOutcome)
            .where(
                DropOutcome.product_id == product_id,
                DropOutcome.backend_id == backend_id,
                col(DropOutcome.drop_at) >= since,
            )
            .order_by(col(DropOutcome.drop_at).desc())
        ).first()

    def record_first_seen(self, product_id: int, backend_id: str, seen_at: Optional[datetime] = None) -> DropOutcome:
        """Mark when a drop was first noticed (e.g. its product URL went live)."""
        seen_at = seen_at or utc_now()
        with Session(self.engine) as session:
            outcome = self._latest_outcome(session, product_id, backend_id, seen_at - FIRST_SEEN_WINDOW)
            if outcome is None:
                outcome = DropOutcome(product_id=product_id, backend_id=backend_id, drop_at=seen_at, first_seen_at=seen_at)
            else:
                first_seen = as_utc(outcome.first_seen_at)
                outcome.first_seen_at = min(first_seen, seen_at) if first_seen else seen_at
                outcome.updated_at = utc_now()
            session.add(outcome)
            session.commit()
            session.refresh(outcome)
            return outcome

    def record_first_in_stock(self, product_id: int, backend_id: str, instock_at: Optional[datetime] = None) -> DropOutcome:
        """Attach an in-stock transition to the drop it belongs to.

        Reuses the most recent outcome of the last 72 hours; the earliest
        in-stock time wins. The buy window is only computed when the drop's
        first-seen time is known.
        """
        instock_at = instock_at or utc_now()
        with Session(self.engine) as session:
            outcome = self._latest_outcome(session, product_id, backend_id, instock_at - FIRST_IN_STOCK_WINDOW)
            if outcome is None:
                outcome = DropOutcome(
                    product_id=product_id,
                    backend_id=backend_id,
                    drop_at=instock_at,
                    first_instock_at=instock_at,
                )
            else:
                first_in = as_utc(outcome.first_instock_at)
                first_in = min(first_in, instock_at) if first_in else instock_at
                outcome.first_instock_at = first_in

                first_seen = as_utc(outcome.first_seen_at)
                if first_seen is not None:
                    outcome.buy_window_sec = max(0, math.floor((first_in - first_seen).total_seconds()))
                outcome.updated_at = utc_now()

            session.add(outcome)
            session.commit()
            session.refresh(outcome)
            logger.info(
                f"Recorded first in-stock for product {product_id} at {backend_id} "
                f"(buy_window_sec={outcome.buy_window_sec})"
            )
            return outcome
