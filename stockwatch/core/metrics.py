"""In-memory per-backend call metrics.

These metrics are process-local and reset on restart. The collector is owned
by the BackendRegistry and injected wherever calls are counted, so tests can
hand in their own instance.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional


@dataclass
class BackendMetrics:
    """Running counters for one backend."""

    backend_id: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    short_circuited: int = 0
    average_response_time_ms: float = 0.0
    rate_limit_hits: int = 0
    circuit_breaker_trips: int = 0
    last_request_time: Optional[datetime] = None

    # Calls that contributed to the latency average (fast-fails don't)
    _timed_requests: int = field(default=0, repr=False)

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    def to_dict(self) -> dict:
        return {
            "backend_id": self.backend_id,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "short_circuited": self.short_circuited,
            "average_response_time_ms": round(self.average_response_time_ms, 1),
            "rate_limit_hits": self.rate_limit_hits,
            "circuit_breaker_trips": self.circuit_breaker_trips,
            "success_rate": round(self.success_rate * 100, 1),
            "last_request_time": self.last_request_time.isoformat() if self.last_request_time else None,
        }


@dataclass
class MetricsCollector:
    """Thread-safe store for backend call metrics."""

    _lock: Lock = field(default_factory=Lock)
    _backends: Dict[str, BackendMetrics] = field(default_factory=dict)

    def _get(self, backend_id: str) -> BackendMetrics:
        """Must be called while holding self._lock."""
        metrics = self._backends.get(backend_id)
        if metrics is None:
            metrics = BackendMetrics(backend_id=backend_id)
            self._backends[backend_id] = metrics
        return metrics

    def record_call(self, backend_id: str, success: bool, elapsed_ms: Optional[float] = None) -> None:
        """Record one backend call. ``elapsed_ms=None`` keeps it out of the latency average."""
        with self._lock:
            metrics = self._get(backend_id)
            metrics.total_requests += 1
            metrics.last_request_time = datetime.now(timezone.utc)
            if success:
                metrics.successful_requests += 1
            else:
                metrics.failed_requests += 1

            if elapsed_ms is not None:
                total = metrics.average_response_time_ms * metrics._timed_requests + elapsed_ms
                metrics._timed_requests += 1
                metrics.average_response_time_ms = total / metrics._timed_requests

    def record_short_circuit(self, backend_id: str) -> None:
        """A call rejected by an OPEN breaker still counts as a failed request."""
        self.record_call(backend_id, success=False)
        with self._lock:
            self._get(backend_id).short_circuited += 1

    def record_rate_limit_hit(self, backend_id: str) -> None:
        with self._lock:
            self._get(backend_id).rate_limit_hits += 1

    def record_circuit_trip(self, backend_id: str) -> None:
        with self._lock:
            self._get(backend_id).circuit_breaker_trips += 1

    def snapshot(self, backend_id: str) -> BackendMetrics:
        """Return a copy of one backend's counters."""
        with self._lock:
            return replace(self._get(backend_id))

    def snapshot_all(self) -> Dict[str, BackendMetrics]:
        with self._lock:
            return {backend_id: replace(metrics) for backend_id, metrics in self._backends.items()}

    def clear(self) -> None:
        with self._lock:
            self._backends.clear()
