"""CLI utility functions and error handling.

Errors are printed as one line of plain text to stderr (or a JSON document
on stdout with ``--output json``) and the process exits with the error's
``exit_code``, so CI jobs can branch on the failure class.

Example:
    from hoist_core.cli.utils import fail

    fail(ConfigurationError("<cli>", "registry.uri is required"), output="json")
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from hoist_core.errors import ExitCode, HoistError
from hoist_core.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from typing import NoReturn

    from hoist_core.schemas.settings import HoistSettings


EXIT_CODES_EPILOG = """
Exit Codes:
    0  - Success (healthy)
    1  - General error
    2  - Usage or authentication error
    3  - Not found (tag, digest, deployment)
    4  - Malformed tag
    5  - Registry unavailable / circuit breaker open
    6  - Promotion conflict (stable tag holds another digest)
    7  - Rollout failed
    8  - Rolled back
    9  - Rollback failed
    10 - Configuration error
"""


def _format(prefix: str, message: str, context: dict[str, Any]) -> str:
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        return f"{prefix}: {message} ({context_str})"
    return f"{prefix}: {message}"


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Deployment not found", target="shop/web")
        # Output: Error: Deployment not found (target=shop/web)
    """
    click.echo(_format("Error", message, context), err=True)


def success(message: str) -> None:
    """Print a result message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print a progress message to stderr (kept out of captured stdout)."""
    click.echo(message, err=True)


def exit_code_for(exc: BaseException) -> int:
    """Map an exception to its CLI exit code."""
    if isinstance(exc, HoistError):
        return int(exc.exit_code)
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return int(ExitCode.REGISTRY_UNAVAILABLE)
    return int(ExitCode.GENERAL_ERROR)


def fail(exc: Exception, output: str = "table") -> NoReturn:
    """Report ``exc`` in the requested output format and exit with its code."""
    exit_code = exit_code_for(exc)
    message = sanitize_error_message(str(exc))
    if output == "json":
        click.echo(
            json.dumps(
                {"error": message, "error_type": type(exc).__name__, "exit_code": exit_code},
                indent=2,
            )
        )
    else:
        error(message)
    sys.exit(exit_code)


def load_cli_settings(
    config: Path | None,
    registry: str | None,
    *,
    overrides: dict[str, Any] | None = None,
) -> HoistSettings:
    """Load settings from ``--config``/``--registry`` plus command overrides.

    Raises:
        ConfigurationError: If the settings are missing or invalid.
    """
    from hoist_core.schemas.settings import load_settings

    return load_settings(config, registry_uri=registry, overrides=overrides)


def registry_options(func: Any) -> Any:
    """Decorator adding the shared ``--registry`` and ``--config`` options."""
    func = click.option(
        "--config",
        "-c",
        "config",
        type=click.Path(dir_okay=False, path_type=Path),
        envvar="HOIST_CONFIG",
        help="Settings file (YAML). Env: HOIST_CONFIG.",
        metavar="PATH",
    )(func)
    func = click.option(
        "--registry",
        "-r",
        "registry",
        envvar="HOIST_REGISTRY",
        help="Registry URI, e.g. oci://localhost:32000. Env: HOIST_REGISTRY.",
        metavar="URI",
    )(func)
    return func


def output_option(func: Any) -> Any:
    """Decorator adding the shared ``--output table|json`` option."""
    return click.option(
        "--output",
        "-o",
        type=click.Choice(["table", "json"], case_sensitive=False),
        default="table",
        show_default=True,
        help="Output format.",
    )(func)


__all__ = [
    "EXIT_CODES_EPILOG",
    "ExitCode",
    "error",
    "exit_code_for",
    "fail",
    "info",
    "load_cli_settings",
    "output_option",
    "registry_options",
    "success",
]
