"""
Runtime wiring.

Builds the long-lived objects once at startup (registry, orchestrator, store,
publisher, poller) so the scheduler and the operator API share them.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from stockwatch.backends.config import default_backend_configs
from stockwatch.backends.registry import BackendRegistry, BreakerSettings
from stockwatch.core.cache import KeyValueCache, build_cache
from stockwatch.core.config import Settings
from stockwatch.core.logging_config import get_logger
from stockwatch.core.metrics import MetricsCollector
from stockwatch.services.availability_poller import AvailabilityPoller
from stockwatch.services.availability_store import AvailabilityStore
from stockwatch.services.drop_signals import SignalPublisher
from stockwatch.services.notifier import LogNotifier, Notifier, WebhookNotifier
from stockwatch.services.orchestrator import IntegrationOrchestrator
from stockwatch.services.watches import SqlWatchRegistry

logger = get_logger(__name__)


@dataclass
class MonitorRuntime:
    registry: BackendRegistry
    orchestrator: IntegrationOrchestrator
    store: AvailabilityStore
    publisher: SignalPublisher
    poller: AvailabilityPoller
    notifier: Notifier
    cache: Optional[KeyValueCache] = None

    async def aclose(self) -> None:
        await self.registry.aclose()
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.notifier, WebhookNotifier):
            await self.notifier.aclose()
        logger.info("Monitor runtime closed")


def build_runtime(config: Settings, engine: Engine) -> MonitorRuntime:
    registry = BackendRegistry(
        metrics=MetricsCollector(),
        breaker_settings=BreakerSettings(
            failure_threshold=config.BREAKER_FAILURE_THRESHOLD,
            recovery_timeout=config.BREAKER_RECOVERY_TIMEOUT_SECONDS,
            monitoring_period=config.BREAKER_MONITORING_PERIOD_SECONDS,
            success_threshold=config.BREAKER_SUCCESS_THRESHOLD,
        ),
        reset_breaker_on_reactivate=config.RESET_BREAKER_ON_REACTIVATE,
    )
    registry.load(default_backend_configs(config))

    orchestrator = IntegrationOrchestrator(registry)
    store = AvailabilityStore(engine)
    cache = build_cache(config.REDIS_URL)
    publisher = SignalPublisher(store, cache=cache, dedup_ttl_seconds=config.SIGNAL_DEDUP_TTL_SECONDS)

    notifier: Notifier
    if config.RESTOCK_WEBHOOK_URL:
        notifier = WebhookNotifier(config.RESTOCK_WEBHOOK_URL)
    else:
        notifier = LogNotifier()

    poller = AvailabilityPoller(
        orchestrator,
        store,
        publisher,
        SqlWatchRegistry(engine),
        notifier,
        batch_size=config.SCANNER_BATCH_SIZE,
        product_delay=config.SCANNER_PRODUCT_DELAY_MS / 1000,
    )

    logger.info(
        "Monitor runtime built",
        backends=registry.ids(),
        active_backends=[entry.id for entry in registry.active()],
        notifier=type(notifier).__name__,
        cache=type(cache).__name__,
    )
    return MonitorRuntime(
        registry=registry,
        orchestrator=orchestrator,
        store=store,
        publisher=publisher,
        poller=poller,
        notifier=notifier,
        cache=cache,
    )
