"""OpenTelemetry tracing helpers: ``create_span`` and ``@traced``.

Spans record failures with sanitized messages only (see
``hoist_core.telemetry.sanitization``). When no OpenTelemetry SDK is
configured the API hands out no-op spans, so instrumentation is free.

Span names used by hoist:
    hoist.registry.<operation>   Registry calls (list_tags, resolve_digest, ...)
    hoist.promote                One promotion
    hoist.rollout                One rollout
    hoist.promote_and_deploy     Full controller run
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar, overload

from opentelemetry.trace import Status, StatusCode, Tracer

from hoist_core.telemetry.sanitization import sanitize_error_message
from hoist_core.telemetry.tracer_factory import get_tracer as _factory_get_tracer
from hoist_core.telemetry.tracer_factory import set_tracer as _factory_set_tracer

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span

P = ParamSpec("P")
R = TypeVar("R")

_TRACER_NAME = "hoist_core"


def get_tracer() -> Tracer:
    """Return the hoist tracer (NoOpTracer if initialization failed)."""
    return _factory_get_tracer(_TRACER_NAME)


def set_tracer(tracer: Tracer | None) -> None:
    """Install a tracer for hoist spans (for testing). None resets it."""
    _factory_set_tracer(_TRACER_NAME, tracer)


def trace_id_of(span: Span) -> str:
    """Return the span's trace id as 32 hex chars, or '' for invalid spans."""
    ctx = span.get_span_context()
    return format(ctx.trace_id, "032x") if ctx.is_valid else ""


def _record_error(span: Span, error: Exception) -> None:
    sanitized = sanitize_error_message(str(error))
    span.set_status(Status(StatusCode.ERROR, sanitized))
    span.set_attribute("exception.type", type(error).__name__)
    span.set_attribute("exception.message", sanitized)


@contextmanager
def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a span as a context manager.

    Args:
        name: Span name.
        attributes: Optional attributes set on the span. None values are skipped.

    Yields:
        The active span.

    Examples:
        >>> with create_span("hoist.promote", attributes={"hoist.repository": "shop"}) as span:
        ...     span.set_attribute("hoist.stable_tag", "1.2.0")
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            _record_error(span, e)
            raise


@overload
def traced(func: Callable[P, R]) -> Callable[P, R]: ...


@overload
def traced(
    *,
    name: str | None = None,
    attributes: dict[str, str] | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]: ...


def traced(
    func: Callable[P, R] | None = None,
    *,
    name: str | None = None,
    attributes: dict[str, str] | None = None,
) -> Callable[P, R] | Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator wrapping a function call in a span.

    Usable bare (``@traced``) or with arguments
    (``@traced(name="hoist.registry.list_tags")``).
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        span_name = name if name is not None else fn.__qualname__

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with create_span(span_name, attributes=dict(attributes or {})):
                return fn(*args, **kwargs)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


__all__ = ["create_span", "get_tracer", "set_tracer", "trace_id_of", "traced"]
