"""Unit tests for hoist_core.rollout.driver.

Tests cover:
- RolloutStateMachine allowed and rejected transitions
- Healthy rollouts, timeouts and crash loops under a fake clock
- Exactly one rollback after a failed rollout, and escalation when it fails
- Failures before the image is patched leave the deployment untouched
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from urllib3.exceptions import MaxRetryError, ProtocolError

from hoist_core.errors import (
    DeploymentNotFoundError,
    InvalidStateTransitionError,
    OrchestratorError,
    RollbackFailedError,
)
from hoist_core.rollout.driver import RolloutDriver, RolloutStateMachine
from hoist_core.rollout.orchestrator import KubernetesOrchestrator
from hoist_core.schemas.release import DeploymentStatus, DeploymentTarget, RolloutState
from hoist_core.schemas.settings import RolloutConfig

PREVIOUS_IMAGE = "registry.test/team/shop:1.1.0"
NEW_IMAGE = "registry.test/team/shop:1.2.0"

PROGRESSING = DeploymentStatus(
    desired_replicas=2, updated_replicas=1, ready_replicas=1, available_replicas=1
)
READY = DeploymentStatus(
    desired_replicas=2, updated_replicas=2, ready_replicas=2, available_replicas=2
)
CRASH_LOOPING = DeploymentStatus(
    desired_replicas=2,
    updated_replicas=1,
    ready_replicas=1,
    available_replicas=1,
    crash_looping=True,
    crash_loop_reason="pod web-7d9f: CrashLoopBackOff",
)


@pytest.fixture
def driver(fake_orchestrator: Any, fake_clock: Any, metrics: MagicMock) -> RolloutDriver:
    """Driver with a 10s timeout polling every second on the fake clock."""
    return RolloutDriver(
        fake_orchestrator,
        RolloutConfig(timeout_seconds=10, poll_interval_seconds=1),
        clock=fake_clock,
        sleep=fake_clock.sleep,
        metrics=metrics,
    )


class TestRolloutStateMachine:
    """Tests for state transitions."""

    @pytest.mark.requirement("FR-030")
    def test_starts_pending(self) -> None:
        """A new machine is pending with one visited state."""
        machine = RolloutStateMachine()

        assert machine.state == RolloutState.PENDING
        assert machine.transitions == [RolloutState.PENDING]

    @pytest.mark.requirement("FR-031")
    def test_failure_path(self) -> None:
        """pending -> in_progress -> failed -> rolled_back is allowed."""
        machine = RolloutStateMachine()

        machine.transition(RolloutState.IN_PROGRESS)
        machine.transition(RolloutState.FAILED)
        machine.transition(RolloutState.ROLLED_BACK)

        assert machine.transitions == [
            RolloutState.PENDING,
            RolloutState.IN_PROGRESS,
            RolloutState.FAILED,
            RolloutState.ROLLED_BACK,
        ]

    @pytest.mark.requirement("FR-031")
    @pytest.mark.parametrize(
        ("path", "invalid"),
        [
            ([], RolloutState.HEALTHY),
            ([], RolloutState.ROLLED_BACK),
            ([RolloutState.IN_PROGRESS], RolloutState.ROLLED_BACK),
            ([RolloutState.IN_PROGRESS, RolloutState.HEALTHY], RolloutState.FAILED),
            ([RolloutState.FAILED, RolloutState.ROLLED_BACK], RolloutState.ROLLED_BACK),
        ],
    )
    def test_rejects_invalid_transitions(
        self, path: list[RolloutState], invalid: RolloutState
    ) -> None:
        """Healthy and rolled_back are terminal; rollback requires a failure."""
        machine = RolloutStateMachine()
        for state in path:
            machine.transition(state)

        with pytest.raises(InvalidStateTransitionError):
            machine.transition(invalid)

        assert machine.state == (path[-1] if path else RolloutState.PENDING)


class TestHealthyRollout:
    """Tests for rollouts that become ready."""

    @pytest.mark.requirement("FR-030")
    def test_ready_after_polling(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        fake_clock: Any,
        target: DeploymentTarget,
    ) -> None:
        """The image is set once and polling stops when replicas are ready."""
        fake_orchestrator.statuses = [PROGRESSING, PROGRESSING, READY]

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.HEALTHY
        assert report.transitions == [
            RolloutState.PENDING,
            RolloutState.IN_PROGRESS,
            RolloutState.HEALTHY,
        ]
        assert report.previous_image == PREVIOUS_IMAGE
        assert report.polls == 3
        assert report.reason == ""
        assert fake_orchestrator.set_image_calls == [NEW_IMAGE]
        assert fake_orchestrator.status_calls == [NEW_IMAGE] * 3
        assert fake_clock.sleeps == [1, 1]

    @pytest.mark.requirement("FR-030")
    def test_records_metric(
        self, driver: RolloutDriver, metrics: MagicMock, target: DeploymentTarget
    ) -> None:
        """Each finished rollout is counted with its state."""
        driver.rollout(target, NEW_IMAGE)

        metrics.record_rollout.assert_called_once()
        assert metrics.record_rollout.call_args.args[:2] == ("shop/web", "healthy")

    @pytest.mark.requirement("FR-030")
    def test_unchanged_image_is_not_patched(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """A target already on the image is only polled."""
        fake_orchestrator.image = NEW_IMAGE

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.HEALTHY
        assert fake_orchestrator.set_image_calls == []

    @pytest.mark.requirement("FR-030")
    def test_transient_status_errors_keep_polling(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """A failed status read is retried on the next poll."""
        fake_orchestrator.statuses = [
            OrchestratorError("shop/web", "get_status", "HTTP 500: Internal Server Error"),
            READY,
        ]

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.HEALTHY
        assert report.polls == 2


class TestFailedRollout:
    """Tests for rollouts that fail after the image was patched."""

    @pytest.mark.requirement("FR-031")
    def test_timeout_rolls_back(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        fake_clock: Any,
        target: DeploymentTarget,
    ) -> None:
        """Replicas never ready within the timeout restore the previous image."""
        fake_orchestrator.statuses = [PROGRESSING]

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.ROLLED_BACK
        assert report.transitions == [
            RolloutState.PENDING,
            RolloutState.IN_PROGRESS,
            RolloutState.FAILED,
            RolloutState.ROLLED_BACK,
        ]
        assert report.reason == "replicas not ready within 10s"
        assert report.polls == 11
        assert sum(fake_clock.sleeps) == pytest.approx(10)
        assert fake_orchestrator.image == PREVIOUS_IMAGE
        assert fake_orchestrator.set_image_calls == [NEW_IMAGE, PREVIOUS_IMAGE]

    @pytest.mark.requirement("FR-031")
    def test_last_sleep_is_clipped_to_deadline(
        self,
        fake_orchestrator: Any,
        fake_clock: Any,
        metrics: MagicMock,
        target: DeploymentTarget,
    ) -> None:
        """Polling never sleeps past the deadline."""
        fake_orchestrator.statuses = [PROGRESSING]
        driver = RolloutDriver(
            fake_orchestrator,
            RolloutConfig(timeout_seconds=5, poll_interval_seconds=2),
            clock=fake_clock,
            sleep=fake_clock.sleep,
            metrics=metrics,
        )

        driver.rollout(target, NEW_IMAGE)

        assert fake_clock.sleeps == [2, 2, 1]

    @pytest.mark.requirement("FR-031")
    def test_crash_loop_rolls_back_without_waiting(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """A crash loop fails the rollout before the timeout."""
        fake_orchestrator.statuses = [PROGRESSING, CRASH_LOOPING]

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.ROLLED_BACK
        assert report.polls == 2
        assert report.reason == "crash loop detected: pod web-7d9f: CrashLoopBackOff"
        assert fake_orchestrator.image == PREVIOUS_IMAGE

    @pytest.mark.requirement("FR-031")
    def test_failed_rollback_escalates(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """A failed rollback raises RollbackFailedError after a single attempt."""
        fake_orchestrator.statuses = [CRASH_LOOPING]
        fake_orchestrator.set_image_errors = [
            None,
            OrchestratorError("shop/web", "set_image", "HTTP 503: Service Unavailable"),
        ]

        with pytest.raises(RollbackFailedError) as exc_info:
            driver.rollout(target, NEW_IMAGE)

        assert exc_info.value.previous_image == PREVIOUS_IMAGE
        assert exc_info.value.exit_code == 9
        assert fake_orchestrator.set_image_calls == [NEW_IMAGE, PREVIOUS_IMAGE]

    @pytest.mark.requirement("FR-031")
    def test_unchanged_image_failure_is_not_rolled_back(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """With nothing patched there is nothing to revert."""
        fake_orchestrator.image = NEW_IMAGE
        fake_orchestrator.statuses = [CRASH_LOOPING]

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.FAILED
        assert fake_orchestrator.set_image_calls == []


class TestFailureBeforePatch:
    """Tests for failures that leave the deployment unchanged."""

    @pytest.mark.requirement("FR-031")
    def test_set_image_failure(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """A rejected patch fails without polling or rollback."""
        fake_orchestrator.set_image_errors = [
            OrchestratorError("shop/web", "set_image", "HTTP 422: Unprocessable Entity")
        ]

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.FAILED
        assert report.transitions == [RolloutState.PENDING, RolloutState.FAILED]
        assert report.reason.startswith("cannot set image")
        assert report.polls == 0
        assert fake_orchestrator.status_calls == []
        assert fake_orchestrator.image == PREVIOUS_IMAGE

    @pytest.mark.requirement("FR-031")
    def test_unreadable_current_image(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """Without the previous image nothing is changed."""
        fake_orchestrator.get_image_error = OrchestratorError(
            "shop/web", "get_image", "HTTP 403: Forbidden"
        )

        report = driver.rollout(target, NEW_IMAGE)

        assert report.state == RolloutState.FAILED
        assert report.previous_image is None
        assert report.reason == "cannot read current image: HTTP 403: Forbidden"
        assert fake_orchestrator.set_image_calls == []

    @pytest.mark.requirement("FR-031")
    def test_missing_deployment_propagates(
        self,
        driver: RolloutDriver,
        fake_orchestrator: Any,
        target: DeploymentTarget,
    ) -> None:
        """A deployment that does not exist is an error, not a failed rollout."""
        fake_orchestrator.get_image_error = DeploymentNotFoundError("shop/web")

        with pytest.raises(DeploymentNotFoundError):
            driver.rollout(target, NEW_IMAGE)


class TestUnreachableCluster:
    """Tests for an API server that drops off after the image was patched."""

    @pytest.mark.requirement("FR-031")
    def test_connection_loss_while_polling_rolls_back(
        self, fake_clock: Any, metrics: MagicMock
    ) -> None:
        """Connection errors during polling end in a rollback, not an escaped exception."""
        deployment = client.V1Deployment(
            metadata=client.V1ObjectMeta(name="web", namespace="shop", generation=1),
            spec=client.V1DeploymentSpec(
                replicas=2,
                selector=client.V1LabelSelector(match_labels={"app": "web"}),
                template=client.V1PodTemplateSpec(
                    spec=client.V1PodSpec(
                        containers=[client.V1Container(name="app", image=PREVIOUS_IMAGE)]
                    )
                ),
            ),
        )
        unreachable = MaxRetryError(
            None, "/apis/apps/v1/namespaces/shop/deployments/web", ProtocolError("refused")
        )
        apps_api = MagicMock()
        apps_api.read_namespaced_deployment.side_effect = [deployment] + [unreachable] * 20
        orchestrator = KubernetesOrchestrator(apps_api, MagicMock())
        driver = RolloutDriver(
            orchestrator,
            RolloutConfig(timeout_seconds=3, poll_interval_seconds=1),
            clock=fake_clock,
            sleep=fake_clock.sleep,
            metrics=metrics,
        )

        report = driver.rollout(DeploymentTarget.parse("shop/web:app"), NEW_IMAGE)

        assert report.state == RolloutState.ROLLED_BACK
        assert report.reason == "replicas not ready within 3s"
        patched = [
            c.kwargs["body"]["spec"]["template"]["spec"]["containers"][0]["image"]
            for c in apps_api.patch_namespaced_deployment.call_args_list
        ]
        assert patched == [NEW_IMAGE, PREVIOUS_IMAGE]
