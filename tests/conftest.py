"""
Test fixtures for stockwatch tests.

Provides database fixtures, sample products and watches, backend configs and
an in-process stub backend for orchestrator/poller tests.
"""

import os

# Keep imports of stockwatch.main from touching a real database or scheduler
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RUN_SCHEDULER", "false")

import pytest
from datetime import timedelta
from typing import Dict, Generator, List, Optional
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from stockwatch.backends.base import BaseBackend
from stockwatch.backends.config import BackendConfig, BackendKind, RateLimit, RetryPolicy
from stockwatch.core.exceptions import BackendErrorKind
from stockwatch.core.metrics import MetricsCollector
from stockwatch.core.typing import utc_now
from stockwatch.models import Product, Watch
from stockwatch.schemas import AvailabilityRequest, AvailabilityResult, HealthStatus


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def sample_products(test_session: Session) -> List[Product]:
    """
    Create sample products for testing.

    Product 4 is inactive and must never be polled.
    """
    now = utc_now()
    products = [
        Product(id=1, name="Switch OLED", sku="6470923", popularity_score=90, created_at=now - timedelta(days=3)),
        Product(id=2, name="PS5 Slim", upc="711719575788", popularity_score=90, created_at=now - timedelta(days=1)),
        Product(id=3, name="Steam Deck", sku="SD-512", popularity_score=10, created_at=now),
        Product(id=4, name="Retired Console", sku="OLD-1", popularity_score=100, is_active=False),
    ]
    for p in products:
        test_session.add(p)
    test_session.commit()
    return products


@pytest.fixture
def sample_watches(test_session: Session, sample_products: List[Product]) -> List[Watch]:
    """
    Watches on product 1:
    - user 10: every backend
    - user 11: only 'alpha'
    - user 12: only 'beta'
    - user 13: inactive
    """
    watches = [
        Watch(id=1, user_id=10, product_id=1, backend_ids=None),
        Watch(id=2, user_id=11, product_id=1, backend_ids=["alpha"]),
        Watch(id=3, user_id=12, product_id=1, backend_ids=["beta"]),
        Watch(id=4, user_id=13, product_id=1, is_active=False),
        Watch(id=5, user_id=10, product_id=2, backend_ids=[]),
    ]
    for w in watches:
        test_session.add(w)
    test_session.commit()
    return watches


# === Backends ===


@pytest.fixture
def make_backend_config():
    """Factory for BackendConfig with generous limits and no backoff delay."""

    def _make(backend_id: str = "alpha", kind: str = BackendKind.API.value, **overrides) -> BackendConfig:
        values = dict(
            id=backend_id,
            name=backend_id.title(),
            slug=backend_id,
            kind=kind,
            base_url=f"https://{backend_id}.test",
            website=f"https://www.{backend_id}.test",
            rate_limit=RateLimit(requests_per_minute=6000, requests_per_hour=100000),
            retry=RetryPolicy(max_attempts=3, backoff=0.0),
        )
        values.update(overrides)
        return BackendConfig(**values)

    return _make


class StubBackend(BaseBackend):
    """In-process backend: serves canned results or raises a configured error."""

    kind = BackendKind.API

    def __init__(self, config: BackendConfig, metrics: Optional[MetricsCollector] = None):
        super().__init__(config, metrics=metrics)
        self.results: Dict[int, AvailabilityResult] = {}
        self.error: Optional[Exception] = None
        self.calls = 0

    def set_result(self, product_id: int, in_stock: bool, **fields) -> AvailabilityResult:
        fields.setdefault("availability_status", "in_stock" if in_stock else "out_of_stock")
        result = AvailabilityResult(product_id=product_id, backend_id=self.backend_id, in_stock=in_stock, **fields)
        self.results[product_id] = result
        return result

    async def check_availability(self, request: AvailabilityRequest) -> AvailabilityResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if request.product_id not in self.results:
            raise self._error("Product not found", BackendErrorKind.NOT_FOUND, 404)
        return self.results[request.product_id]

    async def search_products(self, query: str) -> List[AvailabilityResult]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [r for r in self.results.values() if query.lower() in (r.title or "").lower()]

    async def get_health_status(self) -> HealthStatus:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return HealthStatus(backend_id=self.backend_id, is_healthy=True, response_time_ms=1.0, last_checked=utc_now())


@pytest.fixture
def make_stub_backend(make_backend_config):
    """Factory for StubBackend instances sharing an optional MetricsCollector."""

    def _make(backend_id: str = "alpha", metrics: Optional[MetricsCollector] = None, **config_overrides) -> StubBackend:
        return StubBackend(make_backend_config(backend_id, **config_overrides), metrics=metrics)

    return _make
