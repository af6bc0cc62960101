"""
Exception taxonomy for the monitoring core.

- CircuitOpenError: fast-fail, no network call attempted
- BackendError: transient or permanent failure reported by one backend
- UnknownBackendKindError: configuration error at registration time
- BackendNotFoundError: operator asked for a backend id that isn't registered
"""

from enum import Enum
from typing import Optional


class BackendErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    PARSING = "parsing"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"


class StockwatchError(Exception):
    """Base class for errors raised by this package."""


class BackendError(StockwatchError):
    """A backend call failed. Counted toward that backend's breaker and metrics."""

    def __init__(
        self,
        message: str,
        backend_id: str,
        kind: BackendErrorKind,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.backend_id = backend_id
        self.kind = kind
        self.status_code = status_code
        self.retryable = retryable

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{base} (backend={self.backend_id}, kind={self.kind.value}, status={self.status_code})"
        return f"{base} (backend={self.backend_id}, kind={self.kind.value})"


class CircuitOpenError(StockwatchError):
    """Raised by CircuitBreaker.execute when the circuit is OPEN."""

    def __init__(self, name: str):
        super().__init__(f"Circuit breaker is OPEN for {name}")
        self.name = name


class UnknownBackendKindError(StockwatchError):
    """Backend configuration names an integration kind with no adapter."""

    def __init__(self, backend_id: str, kind: str):
        super().__init__(f"Unknown backend kind {kind!r} for backend {backend_id!r}")
        self.backend_id = backend_id
        self.kind = kind


class BackendNotFoundError(StockwatchError):
    def __init__(self, backend_id: str):
        super().__init__(f"Backend {backend_id!r} is not registered")
        self.backend_id = backend_id
