"""
Circuit breaker for the Mixcloud API.

State lives in a shared store so every worker sees the same breaker:
    mixcloud:breaker:failures    consecutive failure count
    mixcloud:breaker:open_until  epoch seconds the circuit stays open

There is no half-open probe state: once open_until passes, the next check
resets the breaker and lets the request through.

If the store itself is unreachable the breaker reads as closed.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from cache.stores import STORE_ERRORS, KeyValueStore
from config import Config, config as default_config

logger = logging.getLogger(__name__)

FAILURES_KEY = "mixcloud:breaker:failures"
OPEN_UNTIL_KEY = "mixcloud:breaker:open_until"


@dataclass
class CircuitState:
    consecutive_failures: int = 0
    open_until: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.open_until is not None


class CircuitBreaker:
    """Store-backed breaker shared across accounts and requests."""

    def __init__(self, store: KeyValueStore, cfg: Optional[Config] = None,
                 clock: Callable[[], float] = time.time):
        cfg = cfg or default_config
        self._store = store
        self.failure_threshold = cfg.circuit_breaker_threshold
        self.recovery_timeout = cfg.circuit_breaker_timeout
        self._failure_ttl = max(cfg.failure_count_ttl, cfg.circuit_breaker_timeout * 2)
        self._clock = clock

    def is_open(self) -> bool:
        """Check the breaker, resetting it if the open window has passed."""
        try:
            open_until = self._store.get(OPEN_UNTIL_KEY)
            if open_until is not None:
                if float(open_until) > self._clock():
                    return True
                self._clear()
                logger.info("Circuit breaker timeout elapsed, closing circuit")
                return False

            failures = self._store.get(FAILURES_KEY)
            if failures is not None and int(failures) >= self.failure_threshold:
                # open_until expired out of the store before anyone checked
                self._clear()
        except STORE_ERRORS as e:
            logger.warning(f"Circuit breaker state unavailable, assuming closed: {e}")
        return False

    def record_failure(self) -> int:
        """Count a failure; open the circuit once the threshold is reached."""
        try:
            failures = self._store.increment(FAILURES_KEY, self._failure_ttl)
            if failures >= self.failure_threshold and self._store.get(OPEN_UNTIL_KEY) is None:
                open_until = self._clock() + self.recovery_timeout
                # Outlive the open window so the reset path in is_open() runs
                self._store.set(OPEN_UNTIL_KEY, open_until, self._failure_ttl)
                logger.error(
                    f"Circuit breaker TRIPPED - {failures} consecutive failures, "
                    f"open for {self.recovery_timeout}s"
                )
        except STORE_ERRORS as e:
            logger.warning(f"Could not record circuit breaker failure: {e}")
            return 0
        return failures

    def record_success(self) -> None:
        self.reset()

    def reset(self) -> None:
        try:
            self._clear()
        except STORE_ERRORS as e:
            logger.warning(f"Could not reset circuit breaker: {e}")

    def _clear(self) -> None:
        self._store.delete(FAILURES_KEY)
        self._store.delete(OPEN_UNTIL_KEY)

    def state(self) -> CircuitState:
        try:
            failures = self._store.get(FAILURES_KEY)
            open_until = self._store.get(OPEN_UNTIL_KEY)
        except STORE_ERRORS as e:
            logger.warning(f"Circuit breaker state unavailable: {e}")
            return CircuitState()
        return CircuitState(
            consecutive_failures=int(failures) if failures is not None else 0,
            open_until=float(open_until) if open_until is not None else None,
        )
