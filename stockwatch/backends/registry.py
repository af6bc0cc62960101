"""
Backend registry.

Holds exactly one adapter, one circuit breaker and one config per backend,
plus the MetricsCollector every call is counted in.

Usage:
    registry = BackendRegistry(metrics=MetricsCollector())
    registry.load(default_backend_configs())

    entry = registry.get("costco")
    result = await entry.breaker.execute(lambda: entry.adapter.check_availability(request))
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Type

import httpx

from stockwatch.backends.affiliate import AffiliateApiBackend
from stockwatch.backends.api import DirectApiBackend
from stockwatch.backends.base import BaseBackend
from stockwatch.backends.config import BackendConfig, BackendKind
from stockwatch.backends.scraped import ScrapedPageBackend
from stockwatch.core.circuit_breaker import CircuitBreaker, CircuitState
from stockwatch.core.exceptions import UnknownBackendKindError
from stockwatch.core.logging_config import get_logger
from stockwatch.core.metrics import MetricsCollector

logger = get_logger(__name__)

ADAPTER_KINDS: Dict[BackendKind, Type[BaseBackend]] = {
    BackendKind.API: DirectApiBackend,
    BackendKind.AFFILIATE: AffiliateApiBackend,
    BackendKind.SCRAPING: ScrapedPageBackend,
}


@dataclass(frozen=True)
class BreakerSettings:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    monitoring_period: float = 300.0
    success_threshold: int = 3


@dataclass
class BackendEntry:
    adapter: BaseBackend
    breaker: CircuitBreaker
    config: BackendConfig

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def is_active(self) -> bool:
        return self.config.is_active


def resolve_adapter_class(config: BackendConfig) -> Type[BaseBackend]:
    try:
        kind = BackendKind(config.kind)
    except ValueError:
        raise UnknownBackendKindError(config.id, str(config.kind)) from None
    adapter_class = ADAPTER_KINDS.get(kind)
    if adapter_class is None:
        raise UnknownBackendKindError(config.id, kind.value)
    return adapter_class


class BackendRegistry:
    def __init__(
        self,
        metrics: Optional[MetricsCollector] = None,
        breaker_settings: Optional[BreakerSettings] = None,
        reset_breaker_on_reactivate: bool = True,
    ):
        self.metrics = metrics or MetricsCollector()
        self.breaker_settings = breaker_settings or BreakerSettings()
        self.reset_breaker_on_reactivate = reset_breaker_on_reactivate
        self._entries: Dict[str, BackendEntry] = {}

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _on_breaker_state_change(self, name: str, old_state: str, new_state: str) -> None:
        if new_state == CircuitState.OPEN.value:
            self.metrics.record_circuit_trip(name)
        logger.info("Circuit breaker state changed", backend_id=name, old_state=old_state, new_state=new_state)

    def register(
        self,
        config: BackendConfig,
        adapter: Optional[BaseBackend] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> BackendEntry:
        """Build the adapter and a dedicated breaker for one backend.

        Raises UnknownBackendKindError when no adapter exists for ``config.kind``.
        A pre-built ``adapter`` skips kind dispatch.
        """
        if adapter is None:
            adapter_class = resolve_adapter_class(config)
            adapter = adapter_class(config, metrics=self.metrics, client=client)
        else:
            adapter.metrics = self.metrics

        breaker = CircuitBreaker(
            name=config.id,
            failure_threshold=self.breaker_settings.failure_threshold,
            recovery_timeout=self.breaker_settings.recovery_timeout,
            monitoring_period=self.breaker_settings.monitoring_period,
            success_threshold=self.breaker_settings.success_threshold,
            on_state_change=self._on_breaker_state_change,
        )
        entry = BackendEntry(adapter=adapter, breaker=breaker, config=config)
        self._entries[config.id] = entry
        logger.info("Registered backend", backend_id=config.id, kind=config.kind, is_active=config.is_active)
        return entry

    def load(self, configs: Iterable[BackendConfig]) -> List[BackendEntry]:
        """Register every config. A bad kind aborts only that backend."""
        registered = []
        for config in configs:
            try:
                registered.append(self.register(config))
            except UnknownBackendKindError as e:
                logger.error("Failed to register backend", backend_id=config.id, error=str(e))
        return registered

    def get(self, backend_id: str) -> Optional[BackendEntry]:
        return self._entries.get(backend_id)

    def all(self) -> List[BackendEntry]:
        return list(self._entries.values())

    def active(self) -> List[BackendEntry]:
        return [entry for entry in self._entries.values() if entry.is_active]

    def ids(self) -> List[str]:
        return list(self._entries.keys())

    def set_active(self, backend_id: str, is_active: bool) -> bool:
        """Toggle eligibility. Returns False for unknown backends."""
        entry = self._entries.get(backend_id)
        if entry is None:
            return False

        was_active = entry.config.is_active
        entry.config = replace(entry.config, is_active=is_active)
        entry.adapter.config = entry.config

        if is_active:
            if self.reset_breaker_on_reactivate:
                entry.breaker.reset()
            logger.info("Enabled backend", backend_id=backend_id, was_active=was_active,
                        breaker_state=entry.breaker.state.value)
        else:
            logger.info("Disabled backend", backend_id=backend_id, was_active=was_active)
        return True

    def reset_breaker(self, backend_id: str) -> bool:
        entry = self._entries.get(backend_id)
        if entry is None:
            return False
        entry.breaker.reset()
        logger.info("Reset circuit breaker", backend_id=backend_id)
        return True

    async def aclose(self) -> None:
        for entry in self._entries.values():
            try:
                await entry.adapter.aclose()
            except Exception as e:
                logger.warning("Failed to close backend client", backend_id=entry.id, error=str(e))
