"""OpenTelemetry metrics for registry calls, promotions and rollouts.

Metrics:
    hoist_registry_operations_total: Counter of registry calls by operation/status
    hoist_registry_operation_duration_seconds: Histogram of registry call latency
    hoist_promotions_total: Counter of promotions by outcome
    hoist_rollouts_total: Counter of rollouts by terminal state
    hoist_rollout_duration_seconds: Histogram of rollout duration
    hoist_circuit_breaker_state: Gauge of the registry circuit breaker state

Example:
    >>> metrics = get_release_metrics()
    >>> metrics.record_operation("list_tags", "localhost:32000", success=True)
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any

import structlog
from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram

logger = structlog.get_logger(__name__)


class CircuitBreakerStateValue(IntEnum):
    """Numeric circuit breaker states reported by the gauge."""

    CLOSED = 0
    OPEN = 1
    HALF_OPEN = 2


class ReleaseMetrics:
    """Lazily created OpenTelemetry instruments for hoist.

    Instruments are no-ops until an OpenTelemetry SDK MeterProvider is
    installed, so recording is always safe.
    """

    REGISTRY_OPERATIONS_TOTAL = "hoist_registry_operations_total"
    REGISTRY_OPERATION_DURATION_SECONDS = "hoist_registry_operation_duration_seconds"
    PROMOTIONS_TOTAL = "hoist_promotions_total"
    ROLLOUTS_TOTAL = "hoist_rollouts_total"
    ROLLOUT_DURATION_SECONDS = "hoist_rollout_duration_seconds"
    CIRCUIT_BREAKER_STATE = "hoist_circuit_breaker_state"

    def __init__(self, meter_name: str = "hoist", meter_version: str = "1.0.0") -> None:
        self._meter = metrics.get_meter(meter_name, meter_version)
        self._operations_counter: Counter | None = None
        self._duration_histogram: Histogram | None = None
        self._promotions_counter: Counter | None = None
        self._rollouts_counter: Counter | None = None
        self._rollout_duration_histogram: Histogram | None = None
        self._circuit_breaker_gauge: Any = None

    @property
    def operations_counter(self) -> Counter:
        """Get or create the registry operations counter."""
        if self._operations_counter is None:
            self._operations_counter = self._meter.create_counter(
                self.REGISTRY_OPERATIONS_TOTAL,
                unit="1",
                description="Total registry operations by type, status and registry",
            )
        return self._operations_counter

    @property
    def duration_histogram(self) -> Histogram:
        """Get or create the registry operation duration histogram."""
        if self._duration_histogram is None:
            self._duration_histogram = self._meter.create_histogram(
                self.REGISTRY_OPERATION_DURATION_SECONDS,
                unit="s",
                description="Duration of registry operations in seconds",
            )
        return self._duration_histogram

    @property
    def promotions_counter(self) -> Counter:
        """Get or create the promotions counter."""
        if self._promotions_counter is None:
            self._promotions_counter = self._meter.create_counter(
                self.PROMOTIONS_TOTAL,
                unit="1",
                description="Total promotions by outcome",
            )
        return self._promotions_counter

    @property
    def rollouts_counter(self) -> Counter:
        """Get or create the rollouts counter."""
        if self._rollouts_counter is None:
            self._rollouts_counter = self._meter.create_counter(
                self.ROLLOUTS_TOTAL,
                unit="1",
                description="Total rollouts by terminal state",
            )
        return self._rollouts_counter

    @property
    def rollout_duration_histogram(self) -> Histogram:
        """Get or create the rollout duration histogram."""
        if self._rollout_duration_histogram is None:
            self._rollout_duration_histogram = self._meter.create_histogram(
                self.ROLLOUT_DURATION_SECONDS,
                unit="s",
                description="Duration of rollouts in seconds",
            )
        return self._rollout_duration_histogram

    @property
    def circuit_breaker_gauge(self) -> Any:
        """Get or create the circuit breaker state gauge."""
        if self._circuit_breaker_gauge is None:
            self._circuit_breaker_gauge = self._meter.create_gauge(
                self.CIRCUIT_BREAKER_STATE,
                unit="1",
                description="Circuit breaker state (0=closed, 1=open, 2=half_open)",
            )
        return self._circuit_breaker_gauge

    def record_operation(
        self,
        operation: str,
        registry: str,
        *,
        success: bool,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record a completed registry operation.

        Args:
            operation: Operation name (list_tags, resolve_digest, ...).
            registry: Registry host.
            success: Whether the operation succeeded.
            labels: Extra attributes.
        """
        attributes: dict[str, Any] = {
            "operation": operation,
            "registry": registry,
            "status": "success" if success else "failure",
        }
        if labels:
            attributes.update(labels)
        self.operations_counter.add(1, attributes=attributes)
        logger.debug(
            "registry_operation_recorded",
            operation=operation,
            registry=registry,
            success=success,
        )

    def record_duration(self, operation: str, registry: str, duration_seconds: float) -> None:
        """Record the duration of a registry operation."""
        self.duration_histogram.record(
            duration_seconds,
            attributes={"operation": operation, "registry": registry},
        )

    def record_promotion(self, repository: str, outcome: str) -> None:
        """Record a promotion by outcome (promoted, already_promoted, dry_run)."""
        self.promotions_counter.add(1, attributes={"repository": repository, "outcome": outcome})

    def record_rollout(self, target: str, state: str, duration_seconds: float) -> None:
        """Record a finished rollout and its duration."""
        attributes = {"target": target, "state": state}
        self.rollouts_counter.add(1, attributes=attributes)
        self.rollout_duration_histogram.record(duration_seconds, attributes=attributes)

    def set_circuit_breaker_state(self, registry: str, state: CircuitBreakerStateValue) -> None:
        """Report the circuit breaker state for a registry."""
        self.circuit_breaker_gauge.set(int(state), attributes={"registry": registry})


_default_metrics: ReleaseMetrics | None = None


def get_release_metrics() -> ReleaseMetrics:
    """Get the default metrics instance."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = ReleaseMetrics()
    return _default_metrics


def set_release_metrics(metrics_instance: ReleaseMetrics | None) -> None:
    """Set the default metrics instance (for testing). None resets it."""
    global _default_metrics
    _default_metrics = metrics_instance


__all__ = [
    "CircuitBreakerStateValue",
    "ReleaseMetrics",
    "get_release_metrics",
    "set_release_metrics",
]
