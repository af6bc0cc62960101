"""
Drop signal publisher.

Persists normalized drop signals, suppressing repeats of the same
(product, backend, type, value) tuple within a short window.

Dedup keys look like ``dropsig:42:costco:in_stock:3f786850e3``; the last
segment is the first 10 hex chars of the SHA-1 of the signal value.
"""

import hashlib
from datetime import timedelta
from typing import Optional

from stockwatch.core.cache import KeyValueCache
from stockwatch.core.logging_config import get_logger
from stockwatch.core.typing import utc_now
from stockwatch.models import DropSignal, encode_signal_value
from stockwatch.models.drop_signal import SignalValue
from stockwatch.services.availability_store import AvailabilityStore

logger = get_logger(__name__)

DEFAULT_DEDUP_TTL_SECONDS = 600


def hash_value(value: SignalValue) -> str:
    encoded = encode_signal_value(value)
    return hashlib.sha1((encoded or "").encode("utf-8")).hexdigest()[:10]


def build_dedup_key(signal: DropSignal) -> str:
    return f"dropsig:{signal.product_id}:{signal.backend_id}:{signal.signal_type.value}:{hash_value(signal.signal_value)}"


class SignalPublisher:
    def __init__(
        self,
        store: AvailabilityStore,
        cache: Optional[KeyValueCache] = None,
        dedup_ttl_seconds: int = DEFAULT_DEDUP_TTL_SECONDS,
    ):
        self.store = store
        self.cache = cache
        self.dedup_ttl_seconds = dedup_ttl_seconds

    async def _claim(self, dedup_key: str) -> bool:
        """Reserve ``dedup_key`` for this publish. False means a duplicate."""
        if self.cache is None:
            since = utc_now() - timedelta(seconds=self.dedup_ttl_seconds)
            return not self.store.has_recent_signal(dedup_key, since)

        try:
            return await self.cache.set_if_absent(dedup_key, "1", ttl_seconds=self.dedup_ttl_seconds)
        except Exception as e:
            # Better to report a signal twice than to lose it
            logger.warning("Signal dedup cache unavailable, persisting anyway", dedup_key=dedup_key, error=str(e))
            return True

    async def _release(self, dedup_key: str) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.delete(dedup_key)
        except Exception as e:
            logger.warning("Failed to release dedup key", dedup_key=dedup_key, error=str(e))

    async def publish(self, signal: DropSignal) -> bool:
        """Persist ``signal`` unless an identical one was published recently.

        Returns True when persisted, False when suppressed as a duplicate.
        Storage errors propagate to the caller; the dedup key is released
        first so a retry is not suppressed.
        """
        dedup_key = build_dedup_key(signal)
        if not await self._claim(dedup_key):
            logger.debug("Duplicate drop signal suppressed", dedup_key=dedup_key)
            return False

        try:
            self.store.insert_signal(signal, dedup_key)
        except Exception:
            await self._release(dedup_key)
            raise

        logger.info(
            "Drop signal published",
            product_id=signal.product_id,
            backend_id=signal.backend_id,
            signal_type=signal.signal_type.value,
            confidence=signal.confidence,
        )
        return True
