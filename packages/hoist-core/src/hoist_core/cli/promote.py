"""``hoist promote`` command: promotion without rollout.

Example:
    $ hoist promote --repo shop
    $ hoist promote --repo shop --tag 1.2.0-dev2 --dry-run --output json
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from hoist_core.cli.utils import (
    EXIT_CODES_EPILOG,
    ExitCode,
    fail,
    info,
    load_cli_settings,
    output_option,
    registry_options,
    success,
)
from hoist_core.errors import HoistError

if TYPE_CHECKING:
    from hoist_core.schemas.release import PromotionRecord


def _format_promotion_result(record: PromotionRecord, output_format: str) -> str:
    """Format a PromotionRecord for CLI output."""
    if output_format == "json":
        return record.model_dump_json(indent=2)

    lines = [
        "",
        f"Promotion ID: {record.promotion_id}",
        f"Repository:   {record.repository}",
        f"Source tag:   {record.source_tag}",
        f"Stable tag:   {record.derived_tag}",
        f"Digest:       {record.source_digest[:19]}...",
        f"Outcome:      {record.outcome.value}",
        f"Promoted At:  {record.promoted_at.isoformat()}",
        f"Trace ID:     {record.trace_id or '-'}",
        "",
    ]
    return "\n".join(lines)


@click.command(
    name="promote",
    help="Promote a dev tag (the latest by default) to its stable tag.",
    epilog=EXIT_CODES_EPILOG,
)
@click.option("--repo", "repository", required=True, help="Repository holding the dev tags.")
@click.option("--tag", help="Dev tag to promote (default: latest dev tag).", metavar="TAG")
@click.option(
    "--version-prefix",
    help="With no --tag, only consider versions under this prefix.",
    metavar="PREFIX",
)
@registry_options
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Check the promotion without writing to the registry.",
)
@output_option
def promote_command(
    repository: str,
    tag: str | None,
    version_prefix: str | None,
    registry: str | None,
    config: Path | None,
    dry_run: bool,
    output: str,
) -> None:
    """Promote one dev tag."""
    from hoist_core.registry.client import RegistryClient
    from hoist_core.release.audit import PromotionAuditLog
    from hoist_core.release.promoter import Promoter
    from hoist_core.release.tags import policy_from_config

    try:
        settings = load_cli_settings(config, registry)
        policy = policy_from_config(settings.tag_policy)
        client = RegistryClient(settings.registry)
        promoter = Promoter(
            client,
            policy=policy,
            audit_log=PromotionAuditLog(settings.audit.path),
            dry_run=dry_run,
        )
        if tag is None:
            source = client.latest_dev_tag(repository, policy=policy, version_prefix=version_prefix)
            if output == "table":
                info(f"Latest dev tag: {source.tag}")
            record = promoter.promote(source)
        else:
            record = promoter.promote(tag, repository=repository)
    except HoistError as e:
        fail(e, output)

    click.echo(_format_promotion_result(record, output))
    if output == "table":
        success(f"{record.outcome.value}: {record.repository}:{record.derived_tag}")
    sys.exit(ExitCode.SUCCESS)
