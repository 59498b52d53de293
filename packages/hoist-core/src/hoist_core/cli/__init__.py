"""Command-line interface for hoist (``hoist``, a click command group)."""

from __future__ import annotations

from hoist_core.cli.main import cli, main

__all__ = ["cli", "main"]
