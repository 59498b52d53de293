"""Main entry point for the hoist CLI.

Commands:
    hoist promote-and-deploy: Promote the latest dev image and roll it out
    hoist latest-dev-tag: Print the latest dev tag of a repository
    hoist promote: Promote a dev tag without deploying
    hoist rollout: Roll an image out without promoting
    hoist history: Show recorded promotions

Example:
    $ hoist --help
    $ hoist --log-format json promote-and-deploy --repo shop --target shop/web
"""

from __future__ import annotations

import sys
from importlib.metadata import version as get_version

import click

from hoist_core.cli.deploy import promote_and_deploy_command
from hoist_core.cli.history import history_command
from hoist_core.cli.promote import promote_command
from hoist_core.cli.rollout import rollout_command
from hoist_core.cli.tags import latest_dev_tag_command
from hoist_core.telemetry.logging import configure_logging


def _get_version() -> str:
    """Get the hoist package version, or 'unknown' if not installed."""
    try:
        return get_version("hoist")
    except Exception:
        return "unknown"


@click.group(
    name="hoist",
    help="hoist - promote dev images to stable and roll them out.",
    epilog="Use 'hoist <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="hoist",
    message="%(prog)s %(version)s",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="INFO",
    show_default=True,
    envvar="HOIST_LOG_LEVEL",
    help="Minimum log level (logs go to stderr).",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
    show_default=True,
    envvar="HOIST_LOG_FORMAT",
    help="Log format.",
)
def cli(log_level: str, log_format: str) -> None:
    """Root command group for the hoist CLI."""
    configure_logging(log_level=log_level, json_output=log_format.lower() == "json")


cli.add_command(promote_and_deploy_command)
cli.add_command(latest_dev_tag_command)
cli.add_command(promote_command)
cli.add_command(rollout_command)
cli.add_command(history_command)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the hoist CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
