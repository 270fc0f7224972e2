"""Circuit breakers for the LIMS and the primary datastore.

Retries are not handled here: failed sync work is retried by the sync
queue, which owns attempt counting and backoff. The breakers only stop a
dead dependency from being hammered while the queue drains.

All circuit breakers are registered in a global registry for health-check visibility.
"""

import enum
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when a call is attempted on an open circuit."""

    def __init__(self, service_name: str, retry_after: float = 0.0) -> None:
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker is open for {service_name}")


# Global registry of all circuit breakers for health-check endpoints
_circuit_breaker_registry: dict[str, "CircuitBreaker"] = {}
_registry_lock = threading.Lock()


def get_all_circuit_breakers() -> dict[str, "CircuitBreaker"]:
    """Return a snapshot of all registered circuit breakers."""
    with _registry_lock:
        return dict(_circuit_breaker_registry)


class CircuitBreaker:
    """Circuit breaker for protecting calls to external services.

    Tracks consecutive failures and opens the circuit after a threshold
    is reached.  After a recovery timeout the circuit moves to HALF_OPEN
    and allows test requests.  Only after ``success_threshold`` consecutive
    successes in HALF_OPEN does the circuit fully close again.

    Args:
        service_name: Identifier for the protected service (used in logs / registry).
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout: Seconds to wait in OPEN before moving to HALF_OPEN.
        success_threshold: Consecutive successes in HALF_OPEN needed to close.
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 2,
    ) -> None:
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold

        self._failure_count: int = 0
        self._success_count: int = 0
        self._last_failure_time: float = 0.0
        self._state: CircuitState = CircuitState.CLOSED
        self._lock = threading.Lock()

        with _registry_lock:
            _circuit_breaker_registry[service_name] = self

    @property
    def state(self) -> CircuitState:
        """Current circuit state, accounting for recovery timeout."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time > 0:
                elapsed = time.monotonic() - self._last_failure_time
                if elapsed >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
                    self._success_count = 0
                    logger.warning(
                        "Circuit breaker HALF_OPEN for %s (testing recovery after %.1fs)",
                        self.service_name,
                        elapsed,
                    )
            return self._state

    def check(self) -> None:
        """Raise if the circuit is open (calls are not allowed)."""
        if self.state == CircuitState.OPEN:
            retry_after = max(
                0.0,
                self.recovery_timeout - (time.monotonic() - self._last_failure_time),
            )
            raise CircuitBreakerOpen(self.service_name, retry_after=retry_after)

    def record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.warning(
                        "Circuit breaker CLOSED for %s (recovered after %d successes)",
                        self.service_name,
                        self._success_count,
                    )
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
            else:
                self._failure_count = 0
                self._success_count = 0

    def record_failure(self) -> None:
        """Record a failed call.  Opens circuit after threshold."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "Circuit breaker re-OPENED for %s (failed during HALF_OPEN test)",
                    self.service_name,
                )
                self._state = CircuitState.OPEN
                self._success_count = 0
            elif self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        "Circuit breaker OPEN for %s after %d consecutive failures",
                        self.service_name,
                        self._failure_count,
                    )
                self._state = CircuitState.OPEN

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Execute an async function through the circuit breaker.

        Args:
            func: Async callable to execute.
            *args: Positional arguments.
            **kwargs: Keyword arguments.

        Returns:
            The return value of *func*.

        Raises:
            CircuitBreakerOpen: If the circuit is open.
            Exception: Any exception raised by *func* (after recording the failure).
        """
        self.check()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        else:
            self.record_success()
            return result

    def reset(self) -> None:
        """Force-reset the circuit breaker to CLOSED (e.g. for tests or admin)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = 0.0
            logger.info("Circuit breaker RESET for %s", self.service_name)

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for health-check endpoints."""
        return {
            "service": self.service_name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "success_threshold": self.success_threshold,
        }


lims_circuit_breaker = CircuitBreaker(
    "lims", failure_threshold=5, recovery_timeout=60.0, success_threshold=2,
)
supabase_circuit_breaker = CircuitBreaker(
    "supabase", failure_threshold=10, recovery_timeout=30.0, success_threshold=2,
)
