from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
import logging

from stockwatch.core.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (name, old_state, new_state) - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    """
    Per-backend fault isolation.

    State and counters are only mutated while holding ``_lock``, and the lock
    is never held across an ``await``. Concurrent ``execute`` calls therefore
    see eventually consistent counters: a few extra trial calls can slip
    through around the CLOSED -> OPEN boundary, but no transition is lost.
    """

    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0  # seconds
    monitoring_period: float = 300.0  # seconds, informational only
    success_threshold: int = 3
    on_state_change: Optional[StateChangeCallback] = None

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_time: datetime | None = field(default=None, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    @property
    def state(self) -> CircuitState:
        """Return current state. Use allow_request() for state transitions."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def last_failure_time(self) -> Optional[datetime]:
        return self._last_failure_time

    def _transition(self, new_state: CircuitState) -> tuple[str, str]:
        """Switch mode and zero both counters. Must be called while holding self._lock."""
        old_state = self._state
        self._state = new_state
        self._failure_count = 0
        self._success_count = 0
        logger.info(f"Circuit {self.name}: {old_state.name} -> {new_state.name}")
        return old_state.value, new_state.value

    def _notify(self, change: Optional[tuple[str, str]]) -> None:
        """Run the state change callback outside the lock."""
        if change is None or self.on_state_change is None:
            return
        try:
            self.on_state_change(self.name, *change)
        except Exception as e:
            logger.error(f"Circuit breaker notification failed for {self.name}: {e}")

    def _check_recovery_transition(self) -> Optional[tuple[str, str]]:
        """Check if circuit should transition from OPEN to HALF_OPEN.

        Must be called while holding self._lock.
        """
        if self._state == CircuitState.OPEN and self._last_failure_time:
            elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                return self._transition(CircuitState.HALF_OPEN)
        return None

    def allow_request(self) -> bool:
        with self._lock:
            change = self._check_recovery_transition()
            result = self._state != CircuitState.OPEN
        self._notify(change)
        return result

    def record_success(self) -> None:
        change = None
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    change = self._transition(CircuitState.CLOSED)
            else:
                self._failure_count = 0
        self._notify(change)

    def record_failure(self) -> None:
        change = None
        with self._lock:
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit {self.name}: failure during recovery")
                change = self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.failure_threshold:
                    logger.warning(f"Circuit {self.name}: failure threshold {self.failure_threshold} reached")
                    change = self._transition(CircuitState.OPEN)
        self._notify(change)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` under fault isolation.

        Raises CircuitOpenError without calling ``operation`` while the
        circuit is OPEN. Errors raised by ``operation`` are re-raised
        unchanged after they are counted.
        """
        if not self.allow_request():
            raise CircuitOpenError(self.name)

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def reset(self) -> None:
        """Force CLOSED with all counters zeroed (operator intervention)."""
        change = None
        with self._lock:
            if self._state != CircuitState.CLOSED:
                change = self._transition(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
        self._notify(change)

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "last_failure_at": self._last_failure_time.isoformat() if self._last_failure_time else None,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
                "monitoring_period": self.monitoring_period,
                "success_threshold": self.success_threshold,
            }
