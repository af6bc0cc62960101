"""
Availability Poller

One cycle:
1. Select a bounded batch of active products (popularity, then recency)
2. Ask every active backend about each product through the orchestrator
3. Compare with the stored snapshot, upsert it, append price history
4. Publish drop signals (status change, price present, URL seen, in stock)
5. On an in-stock transition, notify every matching watch

Failures are contained at the smallest unit possible: a product whose fetch
fails is skipped, a (product, backend) pair whose store or signal write fails
does not affect the other backends. Only batch selection errors escape.
"""

import asyncio
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional

import structlog

from stockwatch.core.logging_config import get_logger
from stockwatch.core.typing import utc_now
from stockwatch.models import DropSignal, ProductAvailability, SignalType, Watch
from stockwatch.schemas import AvailabilityRequest, AvailabilityResult
from stockwatch.services.availability_store import AvailabilityStore, PollTarget
from stockwatch.services.drop_signals import SignalPublisher
from stockwatch.services.notifier import NotificationOutcome, Notifier, RestockPayload
from stockwatch.services.orchestrator import IntegrationOrchestrator
from stockwatch.services.watches import WatchRegistry

logger = get_logger(__name__)

OUT_OF_STOCK_STATUSES = {"out_of_stock", "unavailable"}

SIGNAL_SOURCE = "availability-poller"
STATUS_CHANGE_CONFIDENCE = 80
PRICE_PRESENT_CONFIDENCE = 70
URL_SEEN_CONFIDENCE = 60
IN_STOCK_CONFIDENCE = 95


@dataclass
class PollCycleResult:
    cycle_id: str
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    products_scanned: int = 0
    product_failures: int = 0
    observations: int = 0
    pair_failures: int = 0
    signals_published: int = 0
    restocks_detected: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def went_in_stock(prior: Optional[ProductAvailability], result: AvailabilityResult) -> bool:
    """A restock needs a prior observation that was not in stock.

    The first observation of a pair never counts, even when in stock.
    """
    if not result.in_stock or prior is None:
        return False
    return not prior.in_stock or prior.availability_status in OUT_OF_STOCK_STATUSES


class AvailabilityPoller:
    def __init__(
        self,
        orchestrator: IntegrationOrchestrator,
        store: AvailabilityStore,
        publisher: SignalPublisher,
        watches: WatchRegistry,
        notifier: Notifier,
        batch_size: int = 25,
        product_delay: float = 0.25,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.publisher = publisher
        self.watches = watches
        self.notifier = notifier
        self.batch_size = batch_size
        self.product_delay = product_delay

        self._lock = asyncio.Lock()
        self.last_result: Optional[PollCycleResult] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def scan_batch(self) -> Optional[PollCycleResult]:
        """Run one poll cycle. Returns None if a cycle is already running."""
        if self._lock.locked():
            logger.info("Poll cycle already running, skipping")
            return None

        async with self._lock:
            summary = PollCycleResult(cycle_id=uuid.uuid4().hex[:12])
            with structlog.contextvars.bound_contextvars(cycle_id=summary.cycle_id):
                await self._run_cycle(summary)
                summary.finished_at = utc_now()
                self.last_result = summary
                logger.info("Poll cycle finished", **{k: v for k, v in summary.to_dict().items() if isinstance(v, int)})
            return summary

    async def _run_cycle(self, summary: PollCycleResult) -> None:
        if not self.orchestrator.select_backends():
            logger.info("No active backends, skipping poll cycle")
            return

        targets = self.store.select_poll_batch(self.batch_size)
        if not targets:
            logger.info("No active products to poll")
            return

        logger.info("Poll cycle started", products=len(targets))
        for index, target in enumerate(targets):
            if index and self.product_delay > 0:
                await asyncio.sleep(self.product_delay)
            await self._scan_product(target, summary)

    async def _scan_product(self, target: PollTarget, summary: PollCycleResult) -> None:
        summary.products_scanned += 1
        request = AvailabilityRequest(product_id=target.product_id, sku=target.sku, upc=target.upc)
        try:
            results = await self.orchestrator.check_availability(request)
        except Exception as e:
            summary.product_failures += 1
            logger.error("Availability fetch failed", product_id=target.product_id, error=str(e))
            return

        for result in results:
            try:
                await self._observe(target, result, summary)
            except Exception as e:
                summary.pair_failures += 1
                logger.error(
                    "Failed to process availability",
                    product_id=target.product_id,
                    backend_id=result.backend_id,
                    error=str(e),
                )

    async def _observe(self, target: PollTarget, result: AvailabilityResult, summary: PollCycleResult) -> None:
        summary.observations += 1
        prior = self.store.get_snapshot(target.product_id, result.backend_id)
        restocked = went_in_stock(prior, result)

        self.store.upsert_snapshot(target.product_id, result)
        self.store.append_price_history(target.product_id, result)

        await self._publish_signals(target, result, prior, restocked, summary)

        if restocked:
            await self._handle_restock(target, result, summary)

    def _signals_for(
        self,
        target: PollTarget,
        result: AvailabilityResult,
        prior: Optional[ProductAvailability],
        restocked: bool,
    ) -> List[DropSignal]:
        def signal(signal_type: SignalType, value, confidence: int) -> DropSignal:
            return DropSignal(
                product_id=target.product_id,
                backend_id=result.backend_id,
                signal_type=signal_type,
                signal_value=value,
                source=SIGNAL_SOURCE,
                confidence=confidence,
                observed_at=result.last_updated,
            )

        signals = []
        if prior is not None and prior.availability_status != result.availability_status:
            signals.append(signal(
                SignalType.STATUS_CHANGE,
                {"from": prior.availability_status, "to": result.availability_status},
                STATUS_CHANGE_CONFIDENCE,
            ))
        if result.price is not None and (prior is None or prior.price is None):
            signals.append(signal(
                SignalType.PRICE_PRESENT,
                {"price": result.price, "original": result.original_price},
                PRICE_PRESENT_CONFIDENCE,
            ))
        if result.product_url and (prior is None or prior.product_url != result.product_url):
            signals.append(signal(SignalType.URL_SEEN, result.product_url, URL_SEEN_CONFIDENCE))
        if restocked:
            signals.append(signal(SignalType.IN_STOCK, True, IN_STOCK_CONFIDENCE))
        return signals

    async def _publish_signals(
        self,
        target: PollTarget,
        result: AvailabilityResult,
        prior: Optional[ProductAvailability],
        restocked: bool,
        summary: PollCycleResult,
    ) -> None:
        for signal in self._signals_for(target, result, prior, restocked):
            try:
                published = await self.publisher.publish(signal)
            except Exception as e:
                logger.warning(
                    "Failed to publish drop signal",
                    product_id=target.product_id,
                    backend_id=result.backend_id,
                    signal_type=signal.signal_type.value,
                    error=str(e),
                )
                continue

            if not published:
                continue
            summary.signals_published += 1
            if signal.signal_type == SignalType.URL_SEEN:
                try:
                    self.store.record_first_seen(target.product_id, result.backend_id, signal.observed_at)
                except Exception as e:
                    logger.warning("Failed to record drop first-seen", product_id=target.product_id,
                                   backend_id=result.backend_id, error=str(e))

    async def _handle_restock(self, target: PollTarget, result: AvailabilityResult, summary: PollCycleResult) -> None:
        summary.restocks_detected += 1
        logger.info(
            "Restock detected",
            product_id=target.product_id,
            backend_id=result.backend_id,
            price=result.price,
        )

        try:
            self.store.record_first_in_stock(target.product_id, result.backend_id, result.last_updated)
        except Exception as e:
            logger.warning("Failed to record drop outcome", product_id=target.product_id,
                           backend_id=result.backend_id, error=str(e))

        watches = [w for w in self.watches.list_active_watches(target.product_id) if w.matches_backend(result.backend_id)]
        if not watches:
            return

        payload = RestockPayload(
            product_id=target.product_id,
            product_name=target.name,
            backend_id=result.backend_id,
            price=result.price,
            product_url=result.product_url,
            cart_url=result.cart_url,
            availability_status=result.availability_status,
        )
        outcomes = await self._notify_all(watches, payload)
        for outcome in outcomes:
            if outcome.success:
                summary.notifications_sent += 1
            else:
                summary.notifications_failed += 1

    async def _notify_all(self, watches: List[Watch], payload: RestockPayload) -> List[NotificationOutcome]:
        settled = await asyncio.gather(
            *(self.notifier.notify(watch, payload) for watch in watches),
            return_exceptions=True,
        )

        outcomes = []
        for watch, outcome in zip(watches, settled):
            if isinstance(outcome, Exception):
                logger.warning("Restock notification failed", watch_id=watch.id, user_id=watch.user_id,
                               error=str(outcome))
                outcomes.append(NotificationOutcome(watch.id, watch.user_id, success=False, error=str(outcome)))
            else:
                outcomes.append(NotificationOutcome(watch.id, watch.user_id, success=True))
        return outcomes
