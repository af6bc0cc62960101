"""Read side of user watches: who wants to hear about a product restocking."""

from typing import List, Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from stockwatch.core.typing import col
from stockwatch.models import Watch


class WatchRegistry(Protocol):
    def list_active_watches(self, product_id: int) -> List[Watch]: ...


class SqlWatchRegistry:
    def __init__(self, engine: Engine):
        self.engine = engine

    def list_active_watches(self, product_id: int) -> List[Watch]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(Watch)
                    .where(Watch.product_id == product_id, col(Watch.is_active).is_(True))
                    .order_by(col(Watch.id))
                ).all()
            )
