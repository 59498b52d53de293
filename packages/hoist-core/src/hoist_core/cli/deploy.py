"""``hoist promote-and-deploy`` command.

Finds the latest dev tag of a repository, promotes it to its stable tag and
rolls the stable image out to a Kubernetes Deployment.

Example:
    $ hoist promote-and-deploy --repo shop --target shop/web --registry oci://localhost:32000
    $ hoist promote-and-deploy --repo shop --target shop/web:app --output json
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
import structlog

from hoist_core.cli.utils import (
    EXIT_CODES_EPILOG,
    fail,
    info,
    load_cli_settings,
    output_option,
    registry_options,
    success,
)
from hoist_core.errors import HoistError

if TYPE_CHECKING:
    from hoist_core.schemas.release import DeploymentOutcome

logger = structlog.get_logger(__name__)


def _format_outcome(outcome: DeploymentOutcome, output_format: str) -> str:
    """Format a DeploymentOutcome for CLI output."""
    if output_format == "json":
        document: dict[str, Any] = outcome.model_dump(mode="json")
        document["state"] = outcome.state.value
        document["exit_code"] = outcome.exit_code
        return json.dumps(document, indent=2)

    rollout = outcome.rollout
    lines = [
        "",
        f"Repository:   {outcome.repository}",
        f"Dev tag:      {outcome.dev_tag}",
        f"Stable tag:   {outcome.stable_tag}",
        f"Digest:       {outcome.promotion.source_digest[:19]}...",
        f"Promotion:    {outcome.promotion.outcome.value} ({outcome.promotion.promotion_id})",
        f"Image:        {outcome.image}",
        f"Target:       {outcome.target}",
        f"Transitions:  {' -> '.join(state.value for state in rollout.transitions)}",
        f"Polls:        {rollout.polls}",
        "",
    ]
    return "\n".join(lines)


def _summary_line(outcome: DeploymentOutcome) -> str:
    state = outcome.state.value
    if outcome.rollout.reason:
        return f"{state}: {outcome.rollout.reason}"
    return f"{state}: {outcome.image} deployed to {outcome.target}"


@click.command(
    name="promote-and-deploy",
    help="Promote the latest dev image to its stable tag and roll it out.",
    epilog="""
Examples:
    $ hoist promote-and-deploy --repo shop --target shop/web
    $ hoist promote-and-deploy --repo shop --target web --version-prefix 1.2 --dry-run
"""
    + EXIT_CODES_EPILOG,
)
@click.option("--repo", "repository", required=True, help="Repository holding the dev tags.")
@click.option(
    "--target",
    required=True,
    help="Deployment reference: [namespace/]name[:container].",
    metavar="REF",
)
@registry_options
@click.option(
    "--kubeconfig",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="KUBECONFIG",
    help="Kubeconfig file (e.g. exported MicroK8s config). Env: KUBECONFIG.",
    metavar="PATH",
)
@click.option("--context", help="Kubeconfig context to use.", metavar="NAME")
@click.option(
    "--version-prefix",
    help="Only consider dev tags of versions under this prefix (e.g. 1.2).",
    metavar="PREFIX",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Rollout timeout in seconds (overrides rollout.timeout_seconds).",
    metavar="SECONDS",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Resolve and check the promotion without writing or deploying.",
)
@output_option
def promote_and_deploy_command(
    repository: str,
    target: str,
    registry: str | None,
    config: Path | None,
    kubeconfig: Path | None,
    context: str | None,
    version_prefix: str | None,
    timeout: float | None,
    dry_run: bool,
    output: str,
) -> None:
    """Run one promote-then-deploy release."""
    from hoist_core.controller import ReleaseController
    from hoist_core.schemas.release import DeploymentTarget

    try:
        deployment_target = DeploymentTarget.parse(target)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--target") from e

    overrides: dict[str, Any] = {}
    if timeout is not None:
        overrides["rollout"] = {"timeout_seconds": timeout}

    if output == "table":
        info(f"Releasing latest dev image of {repository} to {deployment_target}")
        if dry_run:
            info("DRY RUN - No changes will be made")

    try:
        settings = load_cli_settings(config, registry, overrides=overrides)
        controller = ReleaseController.from_settings(
            settings,
            kubeconfig=kubeconfig,
            context=context,
            dry_run=dry_run,
        )
        outcome = controller.run_promotion_and_deploy(
            repository, deployment_target, version_prefix=version_prefix
        )
    except HoistError as e:
        logger.error("promote_and_deploy_failed", error_type=type(e).__name__)
        fail(e, output)

    click.echo(_format_outcome(outcome, output))
    if output == "table":
        success(_summary_line(outcome))

    sys.exit(outcome.exit_code)
