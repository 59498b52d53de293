"""Unit test fixtures for the CLI.

CLI tests run commands through click's CliRunner with the controller,
registry client and orchestrator patched at their source modules.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from uuid import uuid4

import pytest
import structlog
from click.testing import CliRunner

from hoist_core.schemas.release import (
    DeploymentOutcome,
    PromotionOutcome,
    PromotionRecord,
    RolloutReport,
    RolloutState,
)

DIGEST = "sha256:" + "ab" * 32
STABLE_IMAGE = "registry.test/team/shop:1.2.0"


@pytest.fixture(autouse=True)
def _reset_structlog() -> Generator[None, None, None]:
    """The root command configures structlog globally; undo it after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner with HOIST_* variables unset."""
    return CliRunner(
        env={"HOIST_REGISTRY": None, "HOIST_CONFIG": None, "HOIST_AUDIT_LOG": None}
    )


@pytest.fixture
def promotion_record() -> PromotionRecord:
    """A completed promotion of shop 1.2.0-dev2."""
    return PromotionRecord(
        promotion_id=uuid4(),
        repository="shop",
        source_tag="1.2.0-dev2",
        derived_tag="1.2.0",
        source_digest=DIGEST,
        outcome=PromotionOutcome.PROMOTED,
        trace_id="0af7651916cd43dd8448eb211c80319c",
    )


@pytest.fixture
def make_outcome(promotion_record: PromotionRecord) -> Callable[..., DeploymentOutcome]:
    """Factory for DeploymentOutcome in a given terminal state."""

    def _create(
        state: RolloutState = RolloutState.HEALTHY, reason: str = ""
    ) -> DeploymentOutcome:
        transitions = {
            RolloutState.HEALTHY: [RolloutState.IN_PROGRESS, RolloutState.HEALTHY],
            RolloutState.FAILED: [RolloutState.FAILED],
            RolloutState.ROLLED_BACK: [
                RolloutState.IN_PROGRESS,
                RolloutState.FAILED,
                RolloutState.ROLLED_BACK,
            ],
            RolloutState.PENDING: [],
        }[state]
        return DeploymentOutcome(
            repository="shop",
            target="shop/web",
            dev_tag="1.2.0-dev2",
            stable_tag="1.2.0",
            image=STABLE_IMAGE,
            promotion=promotion_record,
            rollout=RolloutReport(
                target="shop/web",
                image=STABLE_IMAGE,
                previous_image="registry.test/team/shop:1.1.0",
                state=state,
                transitions=[RolloutState.PENDING, *transitions],
                reason=reason,
                polls=3,
            ),
        )

    return _create
