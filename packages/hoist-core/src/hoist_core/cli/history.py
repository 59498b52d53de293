"""``hoist history`` command: print promotion audit records."""

from __future__ import annotations

import json
from pathlib import Path

import click

from hoist_core.cli.utils import output_option


@click.command(name="history", help="Show recorded promotions, oldest first.")
@click.option("--repo", "repository", help="Only show promotions of this repository.")
@click.option(
    "--audit-log",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path(".hoist/promotions.jsonl"),
    show_default=True,
    envvar="HOIST_AUDIT_LOG",
    help="Promotion audit log. Env: HOIST_AUDIT_LOG.",
    metavar="PATH",
)
@click.option("--limit", type=click.IntRange(min=1), help="Show only the newest N records.")
@output_option
def history_command(
    repository: str | None,
    audit_log: Path,
    limit: int | None,
    output: str,
) -> None:
    """List promotion records."""
    from hoist_core.release.audit import PromotionAuditLog

    records = PromotionAuditLog(audit_log).records(repository)
    if limit is not None:
        records = records[-limit:]

    if output == "json":
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.echo("No promotions recorded.", err=True)
        return

    click.echo(f"{'PROMOTED AT':<26} {'REPOSITORY':<20} {'SOURCE':<18} {'STABLE':<14} OUTCOME")
    for record in records:
        click.echo(
            f"{record.promoted_at.isoformat(timespec='seconds'):<26} "
            f"{record.repository:<20} {record.source_tag:<18} "
            f"{record.derived_tag:<14} {record.outcome.value}"
        )
