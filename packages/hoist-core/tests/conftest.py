"""Test configuration for hoist-core tests.

Tests run with ``--import-mode=importlib``. Do NOT add __init__.py files
to the test directories.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from hoist_core.telemetry.metrics import set_release_metrics
from hoist_core.telemetry.tracing import set_tracer


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): mark test as validating a specific requirement",
    )


@pytest.fixture(autouse=True)
def _reset_telemetry() -> Generator[None, None, None]:
    """Drop module-level metrics and tracer overrides between tests."""
    yield
    set_release_metrics(None)
    set_tracer(None)
