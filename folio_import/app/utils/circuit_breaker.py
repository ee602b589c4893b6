"""
Circuit breaker for external API calls.

When an API fails repeatedly the circuit "opens" and callers fail fast
instead of piling more requests on a broken service. Callers own their
fallback (the FX service answers CIRCUIT_OPEN with its static table).

States:
- CLOSED: normal operation, requests go through
- OPEN: API is failing, reject immediately until reset_timeout elapses
- HALF_OPEN: one probe request is allowed to test recovery

Each breaker is a plain object owned by the client that uses it (no global
registry), so its state lives exactly as long as that client.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from folio_import.app.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Circuit '{name}' is open, call rejected")


class CircuitBreaker:
    """
    Failure counter with open/half-open/closed transitions.

    Args:
        name: Identifier used in logs
        failure_threshold: Consecutive failures that open the circuit
        reset_timeout: Seconds to wait in OPEN before allowing a probe
        half_open_successes: Successful probes needed to close again
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_successes: int = 1,
        clock: Callable[[], float] = time.monotonic,
        ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_successes = half_open_successes
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failures = 0
        self.last_failure_at: Optional[float] = None
        self._half_open_passed = 0

        self.metrics = {
            "total_requests": 0,
            "failed_requests": 0,
            "rejected_requests": 0,
            "circuit_trips": 0,
            "recoveries": 0,
            }

    async def call(self, primary: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``primary`` through the breaker.

        Raises:
            CircuitOpenError: The circuit is open and the reset timeout has not
                elapsed (``primary`` is not called)
        """
        self.metrics["total_requests"] += 1

        if self.state == CircuitState.OPEN:
            if self._recovery_due():
                self._transition(CircuitState.HALF_OPEN)
                self._half_open_passed = 0
            else:
                self.metrics["rejected_requests"] += 1
                raise CircuitOpenError(self.name)

        try:
            result = await primary()
        except Exception as e:
            self._record_failure(e)
            raise

        self._record_success()
        return result

    def reset(self) -> None:
        """Force the circuit closed and forget past failures."""
        self.failures = 0
        self.last_failure_at = None
        self._transition(CircuitState.CLOSED)

    def _recovery_due(self) -> bool:
        if self.last_failure_at is None:
            return False
        return self._clock() - self.last_failure_at >= self.reset_timeout

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self.state:
            return
        logger.info(
            "Circuit state transition",
            circuit=self.name,
            previous_state=self.state.value,
            new_state=new_state.value,
            failures=self.failures,
            )
        self.state = new_state

    def _record_success(self) -> None:
        self.failures = 0
        if self.state == CircuitState.HALF_OPEN:
            self._half_open_passed += 1
            if self._half_open_passed >= self.half_open_successes:
                self._transition(CircuitState.CLOSED)
                self.metrics["recoveries"] += 1

    def _record_failure(self, error: Exception) -> None:
        self.failures += 1
        self.last_failure_at = self._clock()
        self.metrics["failed_requests"] += 1

        logger.warning(
            "Circuit recorded failure",
            circuit=self.name,
            failures=self.failures,
            threshold=self.failure_threshold,
            error=str(error),
            )

        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self.failures >= self.failure_threshold and self.state == CircuitState.CLOSED:
            self._transition(CircuitState.OPEN)
            self.metrics["circuit_trips"] += 1
