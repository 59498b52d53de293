"""hoist-core: promote dev container images to stable tags and roll them out.

This package provides:
- RegistryClient: tag listing, digest resolution and re-tagging (hoist_core.registry)
- Tag derivation and Promoter: idempotent dev -> stable promotion (hoist_core.release)
- RolloutDriver and KubernetesOrchestrator: rollout with automatic rollback (hoist_core.rollout)
- ReleaseController: the promote-then-deploy sequence (hoist_core.controller)
- Schemas and settings: Pydantic models (hoist_core.schemas)
- Errors: exception hierarchy with CLI exit codes (hoist_core.errors)

Example:
    >>> from hoist_core import ReleaseController, DeploymentTarget, load_settings
    >>> settings = load_settings(Path("hoist.yaml"))
    >>> controller = ReleaseController.from_settings(settings)
    >>> outcome = controller.run_promotion_and_deploy("shop", DeploymentTarget.parse("shop/web"))
"""

from __future__ import annotations

__version__ = "0.1.0"

from hoist_core.controller import ReleaseController
from hoist_core.errors import HoistError
from hoist_core.registry.client import ManifestBlob, RegistryClient
from hoist_core.release.audit import PromotionAuditLog
from hoist_core.release.promoter import Promoter
from hoist_core.release.tags import (
    StripDevSuffixPolicy,
    TagPolicy,
    derive_stable_tag,
    select_latest_dev,
)
from hoist_core.rollout.driver import RolloutDriver
from hoist_core.rollout.orchestrator import KubernetesOrchestrator, Orchestrator
from hoist_core.schemas.release import (
    DeploymentOutcome,
    DeploymentStatus,
    DeploymentTarget,
    ImageTag,
    PromotionRecord,
    RolloutReport,
    RolloutState,
)
from hoist_core.schemas.settings import HoistSettings, load_settings

__all__ = [
    "DeploymentOutcome",
    "DeploymentStatus",
    "DeploymentTarget",
    "HoistError",
    "HoistSettings",
    "ImageTag",
    "KubernetesOrchestrator",
    "ManifestBlob",
    "Orchestrator",
    "PromotionAuditLog",
    "PromotionRecord",
    "Promoter",
    "RegistryClient",
    "ReleaseController",
    "RolloutDriver",
    "RolloutReport",
    "RolloutState",
    "StripDevSuffixPolicy",
    "TagPolicy",
    "__version__",
    "derive_stable_tag",
    "load_settings",
    "select_latest_dev",
]
