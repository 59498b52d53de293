"""Schema definitions for hoist.

Registry Models:
    RegistryConfig: Registry URI, authentication, TLS and resilience settings
    RegistryAuth, RetryConfig, CircuitBreakerConfig, ResilienceConfig

Release Models:
    ImageTag: Parsed dev/stable image tag
    PromotionRecord: Immutable promotion audit record
    RolloutState, DeploymentTarget, DeploymentStatus, RolloutReport
    DeploymentOutcome: Result of a promote-and-deploy run

Settings:
    HoistSettings: Top-level settings loaded by load_settings()
"""

from __future__ import annotations

from hoist_core.schemas.registry import (
    AuthType,
    CircuitBreakerConfig,
    RegistryAuth,
    RegistryConfig,
    ResilienceConfig,
    RetryConfig,
)
from hoist_core.schemas.release import (
    DeploymentOutcome,
    DeploymentStatus,
    DeploymentTarget,
    ImageTag,
    PromotionOutcome,
    PromotionRecord,
    ReleaseChannel,
    RolloutReport,
    RolloutState,
)
from hoist_core.schemas.settings import (
    AuditConfig,
    HoistSettings,
    RolloutConfig,
    TagPolicyConfig,
    load_rollout_settings,
    load_settings,
)

__all__ = [
    "AuditConfig",
    "AuthType",
    "CircuitBreakerConfig",
    "DeploymentOutcome",
    "DeploymentStatus",
    "DeploymentTarget",
    "HoistSettings",
    "ImageTag",
    "PromotionOutcome",
    "PromotionRecord",
    "RegistryAuth",
    "RegistryConfig",
    "ReleaseChannel",
    "ResilienceConfig",
    "RetryConfig",
    "RolloutConfig",
    "RolloutReport",
    "RolloutState",
    "TagPolicyConfig",
    "load_rollout_settings",
    "load_settings",
]
