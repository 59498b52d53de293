"""Logging, tracing and metrics for hoist.

- configure_logging / add_trace_context: structlog setup with trace correlation
- create_span / traced: OpenTelemetry spans with sanitized error recording
- ReleaseMetrics / get_release_metrics: OpenTelemetry instruments
- sanitize_error_message: credential redaction
"""

from __future__ import annotations

from hoist_core.telemetry.logging import add_trace_context, configure_logging
from hoist_core.telemetry.metrics import (
    CircuitBreakerStateValue,
    ReleaseMetrics,
    get_release_metrics,
    set_release_metrics,
)
from hoist_core.telemetry.sanitization import sanitize_error_message
from hoist_core.telemetry.tracing import (
    create_span,
    get_tracer,
    set_tracer,
    trace_id_of,
    traced,
)

__all__ = [
    "CircuitBreakerStateValue",
    "ReleaseMetrics",
    "add_trace_context",
    "configure_logging",
    "create_span",
    "get_release_metrics",
    "get_tracer",
    "sanitize_error_message",
    "set_release_metrics",
    "set_tracer",
    "trace_id_of",
    "traced",
]
