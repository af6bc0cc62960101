"""
Integration orchestrator.

Fans one logical request out to every selected backend concurrently, each
call going through that backend's circuit breaker, and returns whatever the
healthy backends produced. A failing backend is logged and counted but never
fails the whole request.

Usage:
    orchestrator = IntegrationOrchestrator(registry)
    results = await orchestrator.check_availability(AvailabilityRequest(product_id=1, sku="6501234"))
    # [] means "no data available right now", not an error
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from stockwatch.backends.base import BaseBackend
from stockwatch.backends.registry import BackendEntry, BackendRegistry
from stockwatch.core.exceptions import BackendError, BackendErrorKind, BackendNotFoundError, CircuitOpenError
from stockwatch.core.logging_config import get_logger
from stockwatch.core.typing import utc_now
from stockwatch.schemas import AvailabilityRequest, AvailabilityResult, HealthStatus

logger = get_logger(__name__)

T = TypeVar("T")

# Sentinel for "this backend contributed nothing"
_FAILED = object()


class IntegrationOrchestrator:
    def __init__(self, registry: BackendRegistry):
        self.registry = registry

    @property
    def metrics(self):
        return self.registry.metrics

    def select_backends(self, backend_ids: Optional[Sequence[str]] = None) -> List[BackendEntry]:
        """Registered, active backends; optionally limited to ``backend_ids``."""
        if backend_ids is None:
            return self.registry.active()

        selected = []
        for backend_id in backend_ids:
            entry = self.registry.get(backend_id)
            if entry is None:
                logger.debug("Skipping unknown backend", backend_id=backend_id)
            elif entry.is_active:
                selected.append(entry)
        return selected

    async def _call(
        self,
        entry: BackendEntry,
        operation: str,
        call: Callable[[BaseBackend], Awaitable[T]],
    ) -> Tuple[Any, Optional[Exception]]:
        """Run one backend call through its breaker. Never raises."""
        backend_id = entry.id
        started = time.perf_counter()
        try:
            result = await entry.breaker.execute(lambda: call(entry.adapter))
        except CircuitOpenError as e:
            self.metrics.record_short_circuit(backend_id)
            logger.info("Backend skipped, circuit open", backend_id=backend_id, operation=operation)
            return _FAILED, e
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.metrics.record_call(backend_id, success=False, elapsed_ms=elapsed_ms)
            if isinstance(e, BackendError) and e.kind == BackendErrorKind.RATE_LIMIT:
                self.metrics.record_rate_limit_hit(backend_id)
            logger.warning(
                "Backend call failed",
                backend_id=backend_id,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                breaker_state=entry.breaker.state.value,
            )
            return _FAILED, e

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_call(backend_id, success=True, elapsed_ms=elapsed_ms)
        return result, None

    async def _fan_out(
        self,
        operation: str,
        entries: List[BackendEntry],
        call: Callable[[BaseBackend], Awaitable[T]],
        context: Optional[Dict[str, Any]] = None,
    ) -> List[Tuple[BackendEntry, Any, Optional[Exception]]]:
        outcomes = await asyncio.gather(*(self._call(entry, operation, call) for entry in entries))
        settled = [(entry, result, error) for entry, (result, error) in zip(entries, outcomes)]

        if entries and all(result is _FAILED for _, result, _ in settled):
            logger.warning(
                "No successful backend responses",
                operation=operation,
                backends=[entry.id for entry in entries],
                errors={entry.id: str(error) for entry, _, error in settled},
                **(context or {}),
            )
        return settled

    async def check_availability(
        self,
        request: AvailabilityRequest,
        backend_ids: Optional[Sequence[str]] = None,
    ) -> List[AvailabilityResult]:
        entries = self.select_backends(backend_ids)
        settled = await self._fan_out(
            "check_availability",
            entries,
            lambda adapter: adapter.check_availability(request),
            context={"product_id": request.product_id},
        )
        return [result for _, result, _ in settled if result is not _FAILED]

    async def search_products(
        self,
        query: str,
        backend_ids: Optional[Sequence[str]] = None,
    ) -> List[AvailabilityResult]:
        entries = self.select_backends(backend_ids)
        settled = await self._fan_out(
            "search_products",
            entries,
            lambda adapter: adapter.search_products(query),
            context={"query": query},
        )
        results: List[AvailabilityResult] = []
        for _, result, _ in settled:
            if result is not _FAILED:
                results.extend(result)
        return results

    async def get_health_status(self, backend_ids: Optional[Sequence[str]] = None) -> List[HealthStatus]:
        """Every selected backend's probe merged with its current breaker mode.

        Probes that fail (or are fast-failed) show up as unhealthy entries
        rather than disappearing from the list.
        """
        entries = self.select_backends(backend_ids)
        settled = await self._fan_out("get_health_status", entries, lambda adapter: adapter.get_health_status())

        statuses = []
        for entry, result, error in settled:
            if result is _FAILED:
                result = HealthStatus(
                    backend_id=entry.id,
                    is_healthy=False,
                    success_rate=entry.adapter.get_metrics().success_rate,
                    last_checked=utc_now(),
                    errors=[f"Health check failed: {error}"],
                )
            statuses.append(result.model_copy(update={"circuit_breaker_state": entry.breaker.state.value}))
        return statuses

    async def list_backends(self, include_health: bool = False) -> List[Dict[str, Any]]:
        """All registered backends with display info, and health for the active ones."""
        health: Dict[str, HealthStatus] = {}
        if include_health:
            health = {status.backend_id: status for status in await self.get_health_status()}

        return [
            {
                "id": entry.id,
                "name": entry.config.name,
                "slug": entry.config.slug,
                "kind": entry.config.kind,
                "is_active": entry.is_active,
                "website": entry.config.website,
                "circuit_breaker_state": entry.breaker.state.value,
                "health": health.get(entry.id),
            }
            for entry in self.registry.all()
        ]

    def get_metrics(self) -> List[Dict[str, Any]]:
        """Per-backend call metrics plus circuit breaker counters."""
        metrics = []
        for entry in self.registry.all():
            data = entry.adapter.get_metrics().to_dict()
            data["circuit_breaker"] = entry.breaker.get_metrics()
            metrics.append(data)
        return metrics

    def set_backend_active(self, backend_id: str, is_active: bool) -> BackendEntry:
        if not self.registry.set_active(backend_id, is_active):
            raise BackendNotFoundError(backend_id)
        return self.registry.get(backend_id)

    def reset_backend_breaker(self, backend_id: str) -> BackendEntry:
        if not self.registry.reset_breaker(backend_id):
            raise BackendNotFoundError(backend_id)
        return self.registry.get(backend_id)
