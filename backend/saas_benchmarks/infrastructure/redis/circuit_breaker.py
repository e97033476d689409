"""
Redis Circuit Breaker Implementation

Implements the circuit breaker pattern for Redis operations
to prevent cascading failures and provide graceful degradation.

CLOSED passes calls through and tracks outcomes over a rolling window.
When the failure rate reaches the threshold (with at least volume_threshold
samples) the circuit OPENs and rejects calls without touching the store.
After reset_timeout it moves to HALF_OPEN and lets exactly one trial call
through: success closes the circuit, failure re-opens it.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar

from .exceptions import CircuitBreakerOpenException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    # Failure rate (percent) over the rolling window that opens the circuit
    error_threshold_percentage: float = 50.0

    # Minimum number of calls in the window before the rate is evaluated
    volume_threshold: int = 5

    # Length of the rolling statistics window in seconds
    rolling_window: float = 10.0

    # Seconds to wait in OPEN before allowing a trial call
    reset_timeout: float = 30.0

    # Timeout for individual operations
    operation_timeout: float = 3.0

    # Monitor these exception types as failures
    failure_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        OSError,
    )


@dataclass
class CircuitBreakerMetrics:
    """Metrics for circuit breaker monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    timeout_calls: int = 0
    rejected_calls: int = 0
    circuit_opens: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.total_calls == 0:
            return 0.0
        return self.successful_calls / self.total_calls

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate."""
        if self.total_calls == 0:
            return 0.0
        return self.failed_calls / self.total_calls


class RedisCircuitBreaker:
    """
    Circuit breaker for Redis operations.

    State updates happen in short synchronous sections guarded by a lock,
    so concurrent tasks see consistent counters and a cancelled call can
    never leave the half-open trial slot taken.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._window: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self.last_state_change_time = self._clock()
        self.metrics = CircuitBreakerMetrics()
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the reset timeout has elapsed."""
        with self._lock:
            self._maybe_half_open(self._clock())
            return self._state

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        operation: str = "call",
        **kwargs,
    ) -> T:
        """
        Execute function with circuit breaker protection.

        Args:
            func: Coroutine function to execute
            *args: Function arguments
            operation: Operation name for logging and rejection details
            **kwargs: Function keyword arguments

        Returns:
            Function result

        Raises:
            CircuitBreakerOpenException: If the circuit rejects the call
            asyncio.TimeoutError: If the call exceeds operation_timeout
            Exception: Original exception from function call
        """
        is_trial = self._admit(operation)
        start_time = self._clock()

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs), timeout=self.config.operation_timeout
            )

        except asyncio.TimeoutError:
            self._record_failure("timeout", is_trial)
            with self._lock:
                self.metrics.timeout_calls += 1

            logger.warning(
                "Circuit breaker: operation timed out",
                extra={
                    "operation": operation,
                    "execution_time": self._clock() - start_time,
                    "timeout": self.config.operation_timeout,
                    "state": self._state.value,
                },
            )
            raise

        except self.config.failure_exceptions as e:
            self._record_failure(type(e).__name__, is_trial)

            logger.warning(
                "Circuit breaker: operation failed",
                extra={
                    "operation": operation,
                    "exception_type": type(e).__name__,
                    "execution_time": self._clock() - start_time,
                    "state": self._state.value,
                },
            )
            raise

        except BaseException as e:
            # Non-failure exceptions and cancellation don't affect circuit state
            self._release_trial(is_trial)
            logger.debug(
                "Circuit breaker: non-failure exception",
                extra={"operation": operation, "exception_type": type(e).__name__},
            )
            raise

        self._record_success(is_trial)

        logger.debug(
            "Circuit breaker: operation succeeded",
            extra={
                "operation": operation,
                "execution_time": self._clock() - start_time,
                "state": self._state.value,
            },
        )

        return result

    def _admit(self, operation: str) -> bool:
        """Decide whether a call may proceed; returns True for the half-open trial."""
        with self._lock:
            now = self._clock()
            self._maybe_half_open(now)

            if self._state == CircuitState.OPEN:
                self.metrics.rejected_calls += 1
                retry_after = self.config.reset_timeout - (now - (self._opened_at or now))
                raise CircuitBreakerOpenException(
                    operation=operation, retry_after_seconds=max(0.0, retry_after)
                )

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self.metrics.rejected_calls += 1
                    raise CircuitBreakerOpenException(
                        message="Redis circuit breaker is half-open - trial in progress",
                        operation=operation,
                    )
                self._trial_in_flight = True
                self.metrics.total_calls += 1
                return True

            self.metrics.total_calls += 1
            return False

    def _maybe_half_open(self, now: float) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and now - self._opened_at >= self.config.reset_timeout
        ):
            self._transition(CircuitState.HALF_OPEN, now)
            logger.info(
                "Circuit breaker transitioning to HALF_OPEN",
                extra={"open_seconds": now - self._opened_at},
            )

    def _record_success(self, is_trial: bool) -> None:
        """Record successful operation."""
        with self._lock:
            now = self._clock()
            self.metrics.successful_calls += 1
            self.metrics.last_success_time = now

            if is_trial:
                self._trial_in_flight = False
                if self._state == CircuitState.HALF_OPEN:
                    self._window.clear()
                    self._transition(CircuitState.CLOSED, now)
                    logger.info(
                        "Circuit breaker: circuit closed after successful recovery"
                    )
            elif self._state == CircuitState.CLOSED:
                self._window.append((now, True))
                self._prune(now)

    def _record_failure(self, failure_type: str, is_trial: bool) -> None:
        """Record failed operation."""
        with self._lock:
            now = self._clock()
            self.metrics.failed_calls += 1
            self.metrics.last_failure_time = now

            if is_trial:
                self._trial_in_flight = False
                if self._state == CircuitState.HALF_OPEN:
                    self._open(now)
                    logger.warning(
                        "Circuit breaker: circuit opened again after failure in half-open state",
                        extra={"failure_type": failure_type},
                    )
                return

            if self._state != CircuitState.CLOSED:
                return

            self._window.append((now, False))
            self._prune(now)

            samples = len(self._window)
            failures = sum(1 for _, ok in self._window if not ok)
            failure_percentage = failures * 100.0 / samples

            if (
                samples >= self.config.volume_threshold
                and failure_percentage >= self.config.error_threshold_percentage
            ):
                self._open(now)
                logger.warning(
                    "Circuit breaker: circuit opened due to failure threshold",
                    extra={
                        "failures": failures,
                        "samples": samples,
                        "failure_percentage": failure_percentage,
                        "threshold": self.config.error_threshold_percentage,
                        "failure_type": failure_type,
                    },
                )

    def _release_trial(self, is_trial: bool) -> None:
        if is_trial:
            with self._lock:
                self._trial_in_flight = False

    def _prune(self, now: float) -> None:
        horizon = now - self.config.rolling_window
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def _open(self, now: float) -> None:
        self._window.clear()
        self._opened_at = now
        self.metrics.circuit_opens += 1
        self._transition(CircuitState.OPEN, now)

    def _transition(self, state: CircuitState, now: float) -> None:
        self._state = state
        self.last_state_change_time = now

    def force_open(self) -> None:
        """Open the circuit immediately, e.g. during planned store maintenance."""
        with self._lock:
            self._trial_in_flight = False
            self._open(self._clock())
        logger.warning("Circuit breaker manually forced to OPEN state")

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        with self._lock:
            self._window.clear()
            self._opened_at = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED, self._clock())

        logger.info("Circuit breaker manually reset to CLOSED state")

    def get_status(self) -> Dict[str, Any]:
        """Get current circuit breaker status for monitoring."""
        state = self.state
        with self._lock:
            samples = len(self._window)
            failures = sum(1 for _, ok in self._window if not ok)
            return {
                "state": state.value,
                "window_samples": samples,
                "window_failures": failures,
                "last_state_change_time": self.last_state_change_time,
                "metrics": {
                    "total_calls": self.metrics.total_calls,
                    "successful_calls": self.metrics.successful_calls,
                    "failed_calls": self.metrics.failed_calls,
                    "timeout_calls": self.metrics.timeout_calls,
                    "rejected_calls": self.metrics.rejected_calls,
                    "success_rate": self.metrics.success_rate,
                    "failure_rate": self.metrics.failure_rate,
                    "circuit_opens": self.metrics.circuit_opens,
                },
                "config": {
                    "error_threshold_percentage": self.config.error_threshold_percentage,
                    "volume_threshold": self.config.volume_threshold,
                    "rolling_window": self.config.rolling_window,
                    "reset_timeout": self.config.reset_timeout,
                    "operation_timeout": self.config.operation_timeout,
                },
            }
