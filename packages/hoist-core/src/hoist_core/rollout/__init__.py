"""Deployment rollout: orchestrator access and the rollout state machine."""

from __future__ import annotations

from hoist_core.rollout.driver import ALLOWED_TRANSITIONS, RolloutDriver, RolloutStateMachine
from hoist_core.rollout.orchestrator import KubernetesOrchestrator, Orchestrator

__all__ = [
    "ALLOWED_TRANSITIONS",
    "KubernetesOrchestrator",
    "Orchestrator",
    "RolloutDriver",
    "RolloutStateMachine",
]
