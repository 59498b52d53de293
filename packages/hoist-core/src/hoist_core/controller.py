"""Promote-then-deploy orchestration.

ReleaseController sequences one release run: find the latest dev tag,
derive the stable tag, promote by digest, roll the stable image out. The
promotion is complete and visible in the registry before the rollout
starts; a promotion failure means no rollout is attempted, and a failed
rollout leaves the stable tag promoted.

Example:
    >>> settings = load_settings(registry_uri="oci://localhost:32000")
    >>> controller = ReleaseController.from_settings(settings)
    >>> outcome = controller.run_promotion_and_deploy("shop", DeploymentTarget.parse("shop/web"))
    >>> outcome.state
    <RolloutState.HEALTHY: 'healthy'>
"""

from __future__ import annotations

from pathlib import Path

import structlog

from hoist_core.registry.client import RegistryClient
from hoist_core.release.audit import PromotionAuditLog
from hoist_core.release.promoter import Promoter
from hoist_core.release.tags import TagPolicy, derive_stable_tag, policy_from_config
from hoist_core.rollout.driver import RolloutDriver
from hoist_core.rollout.orchestrator import KubernetesOrchestrator, Orchestrator
from hoist_core.schemas.release import (
    DeploymentOutcome,
    DeploymentTarget,
    RolloutReport,
    RolloutState,
)
from hoist_core.schemas.settings import HoistSettings
from hoist_core.telemetry.tracing import create_span

logger = structlog.get_logger(__name__)


class ReleaseController:
    """Runs the promote-and-deploy sequence.

    Args:
        registry: Registry client.
        promoter: Promoter bound to the same registry.
        driver: Rollout driver.
        policy: Tag policy shared with the promoter.
        deploy_by_digest: Deploy ``image@digest`` instead of ``image:stable``.
    """

    def __init__(
        self,
        registry: RegistryClient,
        promoter: Promoter,
        driver: RolloutDriver,
        *,
        policy: TagPolicy | None = None,
        deploy_by_digest: bool = False,
    ) -> None:
        self._registry = registry
        self._promoter = promoter
        self._driver = driver
        self._policy = policy
        self._deploy_by_digest = deploy_by_digest

    @classmethod
    def from_settings(
        cls,
        settings: HoistSettings,
        *,
        orchestrator: Orchestrator | None = None,
        kubeconfig: Path | None = None,
        context: str | None = None,
        dry_run: bool = False,
    ) -> ReleaseController:
        """Wire a controller from settings.

        Args:
            settings: Loaded settings.
            orchestrator: Orchestrator to use (Kubernetes from kubeconfig when None).
            kubeconfig: Kubeconfig path for the default orchestrator.
            context: Kubeconfig context for the default orchestrator.
            dry_run: Promote in dry-run mode.
        """
        policy = policy_from_config(settings.tag_policy)
        registry = RegistryClient(settings.registry)
        promoter = Promoter(
            registry,
            policy=policy,
            audit_log=PromotionAuditLog(settings.audit.path),
            dry_run=dry_run,
        )
        if orchestrator is None:
            orchestrator = KubernetesOrchestrator.from_kubeconfig(
                kubeconfig,
                context,
                crash_loop_restart_threshold=settings.rollout.crash_loop_restart_threshold,
            )
        driver = RolloutDriver(orchestrator, settings.rollout)
        return cls(
            registry,
            promoter,
            driver,
            policy=policy,
            deploy_by_digest=settings.deploy_by_digest,
        )

    @property
    def registry(self) -> RegistryClient:
        return self._registry

    @property
    def promoter(self) -> Promoter:
        return self._promoter

    @property
    def driver(self) -> RolloutDriver:
        return self._driver

    def run_promotion_and_deploy(
        self,
        repository: str,
        target: DeploymentTarget,
        *,
        version_prefix: str | None = None,
    ) -> DeploymentOutcome:
        """Promote the latest dev image of ``repository`` and roll it out.

        Args:
            repository: Repository holding the dev tags.
            target: Deployment to roll the stable image out to.
            version_prefix: Only consider dev tags of versions under this prefix.

        Returns:
            DeploymentOutcome; its state is the rollout's terminal state.

        Raises:
            DevTagNotFoundError: If the repository has no dev tag.
            MalformedTagError: If the derived tag cannot be built.
            PromotionConflictError: If the stable tag holds another digest.
            RollbackFailedError: If a failed rollout could not be reverted.
        """
        log = logger.bind(repository=repository, target=str(target))

        with create_span(
            "hoist.promote_and_deploy",
            attributes={
                "hoist.repository": repository,
                "hoist.target": str(target),
                "hoist.version_prefix": version_prefix,
            },
        ) as span:
            dev_tag = self._registry.latest_dev_tag(
                repository, policy=self._policy, version_prefix=version_prefix
            )
            stable_tag = derive_stable_tag(dev_tag, self._policy)
            log.info("release_selected", dev_tag=dev_tag.tag, stable_tag=stable_tag.tag)

            promotion = self._promoter.promote(dev_tag)

            if self._deploy_by_digest:
                image = self._registry.image_reference(repository, digest=promotion.source_digest)
            else:
                image = self._registry.image_reference(repository, tag=stable_tag.tag)

            if self._promoter.dry_run:
                log.info("rollout_skipped_dry_run", image=image)
                report = self._dry_run_report(target, image)
            else:
                report = self._driver.rollout(target, image)

            outcome = DeploymentOutcome(
                repository=repository,
                target=str(target),
                dev_tag=dev_tag.tag,
                stable_tag=stable_tag.tag,
                image=image,
                promotion=promotion,
                rollout=report,
            )
            span.set_attribute("hoist.outcome", outcome.state.value)
            log.info(
                "release_finished",
                state=outcome.state.value,
                stable_tag=stable_tag.tag,
                promotion_outcome=promotion.outcome.value,
            )
            return outcome

    @staticmethod
    def _dry_run_report(target: DeploymentTarget, image: str) -> RolloutReport:
        return RolloutReport(
            target=str(target),
            image=image,
            state=RolloutState.PENDING,
            transitions=[RolloutState.PENDING],
            reason="dry run: rollout not attempted",
        )


__all__ = ["ReleaseController"]
