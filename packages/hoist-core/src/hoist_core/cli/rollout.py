"""``hoist rollout`` command: roll an image out without promotion."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from hoist_core.cli.utils import EXIT_CODES_EPILOG, fail, output_option, success
from hoist_core.errors import ExitCode, HoistError


@click.command(
    name="rollout",
    help="Roll an image out to a deployment, rolling back on failure.",
    epilog="""
Examples:
    $ hoist rollout --target shop/web --image localhost:32000/shop:1.2.0
"""
    + EXIT_CODES_EPILOG,
)
@click.option(
    "--target",
    required=True,
    help="Deployment reference: [namespace/]name[:container].",
    metavar="REF",
)
@click.option("--image", required=True, help="Image reference to deploy.", metavar="IMAGE")
@click.option(
    "--config",
    "-c",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="HOIST_CONFIG",
    help="Settings file (only the rollout section is used). Env: HOIST_CONFIG.",
    metavar="PATH",
)
@click.option(
    "--kubeconfig",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="KUBECONFIG",
    help="Kubeconfig file. Env: KUBECONFIG.",
    metavar="PATH",
)
@click.option("--context", help="Kubeconfig context to use.", metavar="NAME")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Rollout timeout in seconds.",
    metavar="SECONDS",
)
@output_option
def rollout_command(
    target: str,
    image: str,
    config: Path | None,
    kubeconfig: Path | None,
    context: str | None,
    timeout: float | None,
    output: str,
) -> None:
    """Roll out one image."""
    from hoist_core.rollout.driver import RolloutDriver
    from hoist_core.rollout.orchestrator import KubernetesOrchestrator
    from hoist_core.schemas.release import ROLLOUT_STATE_EXIT_CODES, DeploymentTarget
    from hoist_core.schemas.settings import load_rollout_settings

    try:
        deployment_target = DeploymentTarget.parse(target)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--target") from e

    overrides: dict[str, Any] = {}
    if timeout is not None:
        overrides["timeout_seconds"] = timeout

    try:
        rollout_config = load_rollout_settings(config, overrides=overrides)
        orchestrator = KubernetesOrchestrator.from_kubeconfig(
            kubeconfig,
            context,
            crash_loop_restart_threshold=rollout_config.crash_loop_restart_threshold,
        )
        report = RolloutDriver(orchestrator, rollout_config).rollout(deployment_target, image)
    except HoistError as e:
        fail(e, output)

    exit_code = int(ROLLOUT_STATE_EXIT_CODES.get(report.state, ExitCode.GENERAL_ERROR))
    if output == "json":
        document = report.model_dump(mode="json")
        document["exit_code"] = exit_code
        click.echo(json.dumps(document, indent=2))
    elif report.reason:
        success(f"{report.state.value}: {report.reason}")
    else:
        success(f"{report.state.value}: {image} deployed to {report.target}")
    sys.exit(exit_code)
