"""structlog configuration with OpenTelemetry trace correlation.

Logs emitted inside an active span carry ``trace_id`` and ``span_id`` so CI
output can be joined with traces. Logs always go to stderr; stdout is
reserved for command results (JSON output must stay machine-readable).
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import INVALID_SPAN_ID, INVALID_TRACE_ID

EventDict = MutableMapping[str, Any]

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def add_trace_context(
    logger: Any,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """structlog processor injecting the active span's trace and span ids.

    Args:
        logger: Logger instance (unused, required by the processor API).
        method_name: Log method name (unused).
        event_dict: Event dictionary to enrich.

    Returns:
        The event dictionary, with ``trace_id``/``span_id`` when a span is active.
    """
    ctx = trace.get_current_span().get_span_context()
    if ctx.trace_id != INVALID_TRACE_ID and ctx.span_id != INVALID_SPAN_ID:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structlog for hoist.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: JSON lines when True, human-readable console otherwise.

    Raises:
        ValueError: If log_level is not a known level name.

    Examples:
        >>> configure_logging(log_level="DEBUG", json_output=False)
    """
    level_name = log_level.upper()
    if level_name not in _LOG_LEVELS:
        expected = ", ".join(_LOG_LEVELS)
        raise ValueError(f"Unknown log level '{log_level}' (expected one of {expected})")
    level = logging.getLevelName(level_name)

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_trace_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


__all__ = [
    "add_trace_context",
    "configure_logging",
]
