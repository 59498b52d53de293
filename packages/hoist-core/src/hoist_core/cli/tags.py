"""``hoist latest-dev-tag`` command."""

from __future__ import annotations

import json
from pathlib import Path

import click

from hoist_core.cli.utils import (
    EXIT_CODES_EPILOG,
    fail,
    load_cli_settings,
    output_option,
    registry_options,
)
from hoist_core.errors import HoistError


@click.command(
    name="latest-dev-tag",
    help="Print the latest dev tag of a repository.",
    epilog="""
Examples:
    $ hoist latest-dev-tag --repo shop
    $ hoist latest-dev-tag --repo shop --version-prefix 1.2 --output json
"""
    + EXIT_CODES_EPILOG,
)
@click.option("--repo", "repository", required=True, help="Repository to search.")
@click.option(
    "--version-prefix",
    help="Only consider versions under this prefix (e.g. 1.2).",
    metavar="PREFIX",
)
@registry_options
@output_option
def latest_dev_tag_command(
    repository: str,
    version_prefix: str | None,
    registry: str | None,
    config: Path | None,
    output: str,
) -> None:
    """Resolve and print the latest dev tag."""
    from hoist_core.registry.client import RegistryClient
    from hoist_core.release.tags import policy_from_config

    try:
        settings = load_cli_settings(config, registry)
        client = RegistryClient(settings.registry)
        tag = client.latest_dev_tag(
            repository,
            policy=policy_from_config(settings.tag_policy),
            version_prefix=version_prefix,
        )
    except HoistError as e:
        fail(e, output)

    if output == "json":
        click.echo(
            json.dumps(
                {
                    "repository": tag.repository,
                    "tag": tag.tag,
                    "version": tag.version,
                    "build": tag.build,
                    "image": client.image_reference(repository, tag=tag.tag),
                },
                indent=2,
            )
        )
    else:
        click.echo(tag.tag)
