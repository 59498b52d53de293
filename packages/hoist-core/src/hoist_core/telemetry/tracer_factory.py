"""Thread-safe tracer cache for OpenTelemetry.

Tracers are created lazily per instrumenting module name. If the global
OpenTelemetry state cannot hand out a tracer, a NoOpTracer is returned so that
tracing never breaks a release run.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer

_tracers: dict[str, Tracer] = {}
_tracer_init_failed: bool = False
_lock = threading.Lock()


def get_tracer(name: str = "hoist") -> Tracer:
    """Get or create the tracer for ``name``.

    Args:
        name: Instrumenting module name. Defaults to "hoist".

    Returns:
        Cached Tracer, or a NoOpTracer if initialization failed.
    """
    global _tracer_init_failed

    if name in _tracers:
        return _tracers[name]
    if _tracer_init_failed:
        return trace.NoOpTracer()

    with _lock:
        if name in _tracers:
            return _tracers[name]
        try:
            tracer = trace.get_tracer(name)
        except Exception:
            _tracer_init_failed = True
            return trace.NoOpTracer()
        _tracers[name] = tracer
        return tracer


def set_tracer(name: str, tracer: Tracer | None) -> None:
    """Install (or clear, with None) the tracer for ``name``. Used by tests."""
    with _lock:
        if tracer is None:
            _tracers.pop(name, None)
        else:
            _tracers[name] = tracer


def reset_tracer() -> None:
    """Clear cached tracers and the failure flag."""
    global _tracer_init_failed
    with _lock:
        _tracers.clear()
        _tracer_init_failed = False


__all__ = ["get_tracer", "reset_tracer", "set_tracer"]
