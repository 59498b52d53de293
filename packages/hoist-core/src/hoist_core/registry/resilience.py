"""Retry and circuit breaker patterns for registry calls.

Key Components:
    RetryPolicy: Exponential backoff with jitter for transient failures
    CircuitBreaker: Three-state pattern (CLOSED/OPEN/HALF_OPEN) for availability

Only transport failures (RegistryUnavailableError and the builtin
ConnectionError/TimeoutError) are retried or counted against the circuit.
Not-found, auth, malformed-tag and conflict errors propagate on the first
attempt and leave the circuit untouched.

Example:
    >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
    >>> circuit = CircuitBreaker("registry.example.com", CircuitBreakerConfig())
    >>> with circuit.protect():
    ...     tags = policy.wrap(fetch_tags)()
"""

from __future__ import annotations

import functools
import random
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, ParamSpec, TypeVar

import structlog

from hoist_core.errors import CircuitBreakerOpenError, RegistryUnavailableError
from hoist_core.schemas.registry import CircuitBreakerConfig, RetryConfig
from hoist_core.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from hoist_core.telemetry.metrics import ReleaseMetrics

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    RegistryUnavailableError,
    ConnectionError,
    TimeoutError,
)
"""Exceptions treated as transient transport failures."""


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    Retry timeline (default config):
    - Attempt 1: immediate
    - Attempt 2: ~1s delay (with jitter)
    - Attempt 3: ~2s delay (with jitter)

    Attributes:
        config: RetryConfig with max_attempts, delays and jitter settings.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable_exceptions: tuple[type[Exception], ...] | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize RetryPolicy.

        Args:
            config: Retry configuration. Uses defaults if None.
            retryable_exceptions: Exception types to retry on.
                Defaults to TRANSIENT_ERRORS.
            sleep: Sleep function (injectable for tests).
        """
        self._config = config or RetryConfig()
        self._retryable_exceptions = retryable_exceptions or TRANSIENT_ERRORS
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        """Return the retry configuration."""
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        delay = initial * (multiplier ^ attempt), capped at max_delay_ms,
        with optional ±25% jitter.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        base_delay_ms = min(
            self._config.initial_delay_ms * (self._config.backoff_multiplier**attempt),
            self._config.max_delay_ms,
        )

        if self._config.jitter:
            jitter_range = base_delay_ms * 0.25
            base_delay_ms += random.uniform(-jitter_range, jitter_range)

        return max(base_delay_ms, 0.0) / 1000.0

    def should_retry(self, exception: Exception) -> bool:
        """Check if exception is retryable."""
        return isinstance(exception, self._retryable_exceptions)

    def wrap(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorator retrying ``func`` on transient failures.

        The last transient exception is re-raised once attempts are exhausted.
        """

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in self.attempts():
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not attempt.should_retry(e):
                        if self.should_retry(e):
                            logger.warning(
                                "retry_exhausted",
                                attempts=self._config.max_attempts,
                                error=sanitize_error_message(str(e)),
                            )
                        raise
                    attempt.wait(e)
            raise RuntimeError("Retry exhausted without exception")

        return wrapper

    def attempts(self) -> RetryAttemptIterator:
        """Return an iterator for manual retry control.

        Example:
            >>> for attempt in policy.attempts():
            ...     try:
            ...         result = risky_operation()
            ...         break
            ...     except RegistryUnavailableError as e:
            ...         if not attempt.should_retry(e):
            ...             raise
            ...         attempt.wait(e)
        """
        return RetryAttemptIterator(self)

    def _sleep_for(self, seconds: float) -> None:
        self._sleep(seconds)


class RetryAttemptIterator:
    """Iterator of RetryAttempt objects, one per allowed attempt."""

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy
        self._attempt = 0

    def __iter__(self) -> RetryAttemptIterator:
        return self

    def __next__(self) -> RetryAttempt:
        if self._attempt >= self._policy.config.max_attempts:
            raise StopIteration

        attempt = RetryAttempt(self._policy, self._attempt)
        self._attempt += 1
        return attempt


class RetryAttempt:
    """Single retry attempt with delay and tracking."""

    def __init__(self, policy: RetryPolicy, attempt_number: int) -> None:
        self._policy = policy
        self._attempt_number = attempt_number

    @property
    def attempt_number(self) -> int:
        """Return current attempt number (0-indexed)."""
        return self._attempt_number

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last attempt."""
        return self._attempt_number >= self._policy.config.max_attempts - 1

    def should_retry(self, exception: Exception) -> bool:
        """Check if exception is retryable and attempts remain."""
        return not self.is_last_attempt and self._policy.should_retry(exception)

    def wait(self, error: Exception | None = None) -> None:
        """Sleep before the next attempt."""
        if self.is_last_attempt:
            return
        delay = self._policy.calculate_delay(self._attempt_number)
        logger.debug(
            "retry_attempt",
            attempt=self._attempt_number + 1,
            max_attempts=self._policy.config.max_attempts,
            delay_seconds=round(delay, 3),
            error=sanitize_error_message(str(error)) if error is not None else None,
        )
        self._policy._sleep_for(delay)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker for registry availability.

    State Transitions:
    - CLOSED -> OPEN: After failure_threshold consecutive transport failures
    - OPEN -> HALF_OPEN: After recovery_timeout_ms elapses
    - HALF_OPEN -> CLOSED: On successful probe
    - HALF_OPEN -> OPEN: On failed probe

    All state mutations are protected by a threading lock.

    Attributes:
        registry: Registry identifier for logging/metrics.
        config: CircuitBreakerConfig with thresholds and timeouts.
        state: Current circuit state.
    """

    def __init__(
        self,
        registry: str,
        config: CircuitBreakerConfig | None = None,
        *,
        metrics: ReleaseMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize CircuitBreaker.

        Args:
            registry: Registry host for identification.
            config: Circuit breaker configuration. Uses defaults if None.
            metrics: Optional ReleaseMetrics for the state gauge.
            clock: Returns the current UTC time (injectable for tests).
        """
        self._registry = registry
        self._config = config or CircuitBreakerConfig()
        self._metrics = metrics
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._half_open_requests = 0
        self._lock = threading.Lock()

        self._emit_state_metric()

    @property
    def config(self) -> CircuitBreakerConfig:
        """Return the circuit breaker configuration."""
        return self._config

    @property
    def state(self) -> CircuitState:
        """Return current circuit state."""
        with self._lock:
            self._update_state()
            return self._state

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (rejecting requests)."""
        return self.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if circuit is closed (normal operation)."""
        return self.state == CircuitState.CLOSED

    @property
    def failure_count(self) -> int:
        """Return current consecutive failure count."""
        return self._failure_count

    @property
    def recovery_time(self) -> datetime | None:
        """Timestamp when the circuit will go HALF_OPEN, or None if not OPEN."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._last_failure_time is None:
                return None
            recovery = timedelta(milliseconds=self._config.recovery_timeout_ms)
            return self._last_failure_time + recovery

    def _emit_state_metric(self) -> None:
        if self._metrics is None:
            return

        from hoist_core.telemetry.metrics import CircuitBreakerStateValue

        state_value_map = {
            CircuitState.CLOSED: CircuitBreakerStateValue.CLOSED,
            CircuitState.OPEN: CircuitBreakerStateValue.OPEN,
            CircuitState.HALF_OPEN: CircuitBreakerStateValue.HALF_OPEN,
        }
        self._metrics.set_circuit_breaker_state(self._registry, state_value_map[self._state])

    def allow_request(self) -> bool:
        """Check whether a request may proceed.

        Returns:
            True if the request is allowed, False if it should fail fast.
        """
        if not self._config.enabled:
            return True

        with self._lock:
            self._update_state()

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                return False

            if self._half_open_requests < self._config.half_open_requests:
                self._half_open_requests += 1
                logger.debug(
                    "circuit_half_open_probe",
                    registry=self._registry,
                    probe_number=self._half_open_requests,
                )
                return True

            return False

    def record_success(self) -> None:
        """Record a successful request, closing a HALF_OPEN circuit."""
        if not self._config.enabled:
            return

        with self._lock:
            state_changed = False
            if self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "circuit_closed",
                    registry=self._registry,
                    previous_failures=self._failure_count,
                )
                self._state = CircuitState.CLOSED
                self._half_open_requests = 0
                state_changed = True

            self._failure_count = 0

            if state_changed:
                self._emit_state_metric()

    def record_failure(self) -> None:
        """Record a transport failure, opening the circuit at the threshold."""
        if not self._config.enabled:
            return

        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            state_changed = False

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    "circuit_reopened",
                    registry=self._registry,
                    failure_count=self._failure_count,
                )
                self._state = CircuitState.OPEN
                self._half_open_requests = 0
                state_changed = True

            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._config.failure_threshold
            ):
                logger.warning(
                    "circuit_opened",
                    registry=self._registry,
                    failure_count=self._failure_count,
                    recovery_timeout_ms=self._config.recovery_timeout_ms,
                )
                self._state = CircuitState.OPEN
                state_changed = True

            if state_changed:
                self._emit_state_metric()

    def _update_state(self) -> None:
        """Move OPEN -> HALF_OPEN once the recovery timeout elapsed. Lock held."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return

        elapsed_ms = (self._clock() - self._last_failure_time).total_seconds() * 1000

        if elapsed_ms >= self._config.recovery_timeout_ms:
            logger.info(
                "circuit_half_open",
                registry=self._registry,
                elapsed_ms=elapsed_ms,
            )
            self._state = CircuitState.HALF_OPEN
            self._half_open_requests = 0
            self._emit_state_metric()

    @contextmanager
    def protect(
        self,
        failure_exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
    ) -> Iterator[None]:
        """Context manager for circuit breaker protection.

        Exceptions of ``failure_exceptions`` count as failures; any other
        exception, or a clean exit, counts as the registry answering.

        Raises:
            CircuitBreakerOpenError: If the circuit is open.
        """
        if not self.allow_request():
            recovery_at = self.recovery_time
            raise CircuitBreakerOpenError(
                registry=self._registry,
                failure_count=self._failure_count,
                recovery_at=recovery_at.isoformat() if recovery_at else None,
            )

        try:
            yield
        except failure_exceptions:
            self.record_failure()
            raise
        except Exception:
            self.record_success()
            raise
        self.record_success()

    def reset(self) -> None:
        """Reset the circuit breaker to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_requests = 0
            logger.info("circuit_reset", registry=self._registry)
            self._emit_state_metric()


def with_resilience(
    retry_policy: RetryPolicy | None = None,
    circuit_breaker: CircuitBreaker | None = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory combining retry and circuit breaker.

    Each attempt passes through the circuit breaker, so an opening circuit
    stops the retry loop early with CircuitBreakerOpenError.

    Example:
        >>> @with_resilience(RetryPolicy(RetryConfig(max_attempts=3)), circuit)
        ... def fetch_tags():
        ...     return oras_client.get_tags("registry/app")
    """
    policy = retry_policy or RetryPolicy()

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def attempt(*args: P.args, **kwargs: P.kwargs) -> T:
            if circuit_breaker is None:
                return func(*args, **kwargs)
            with circuit_breaker.protect():
                return func(*args, **kwargs)

        return policy.wrap(attempt)

    return decorator


__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RetryAttempt",
    "RetryPolicy",
    "TRANSIENT_ERRORS",
    "with_resilience",
]
